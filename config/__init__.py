# config package - authoritative source for client configuration.
#
# Sub-modules:
#   api_config.py    - environment endpoints, environment variable names,
#                      authentication endpoint wire schema
