"""
Constants describing the Let's Encrypt certificate authority.
"""

DISPLAY_NAME = "Let's Encrypt"

# The CA rejects orders with more identifiers than this.
MAX_DOMAINS_PER_CERTIFICATE = 100

# Preferred ceiling when packing vhosts into buckets.
SOFT_MAX_DOMAINS_PER_CERTIFICATE = 24

DAYS_TO_REPLACE = 29
VALIDITY_PERIOD_DAYS = 90

HTTP_DCV_MAX_REDIRECTS = 10

CAA_STRING = "letsencrypt.org"

URI_DCV_RELATIVE_PATH = ".well-known/acme-challenge"

HTTP_DCV_TIMEOUT_SECONDS = 30
DNS_DCV_TIMEOUT_SECONDS = 300

# A cached DCV success is reused only while it is valid for longer than this.
EXPIRY_SAFETY_MARGIN_SECONDS = 3600

CHECK_FREQUENCY = "3hours"

ORDERS_RATE_LIMIT_ERROR_TYPE = "urn:ietf:params:acme:error:rateLimited"
ORDERS_RATE_LIMIT_DETAIL = "too many new orders"

DNS_CHALLENGE_RECORD_PREFIX = "_acme-challenge"

SPECS = {
    "RATE_LIMIT_CERTIFICATES_PER_REGISTERED_DOMAIN_PER_WEEK": 50,
    "AVERAGE_DELIVERY_TIME": 0,
    "DCV_METHODS": ("http", "dns"),
    "VALIDITY_PERIOD": VALIDITY_PERIOD_DAYS * 86400,
    "SUPPORTS_WILDCARD": True,
    "MAX_DOMAINS_PER_CERTIFICATE": MAX_DOMAINS_PER_CERTIFICATE,
}

# Values the AutoSSL framework reads from each provider.
PROVIDER_CONSTANTS = {
    "DISPLAY_NAME": DISPLAY_NAME,
    "DAYS_TO_REPLACE": DAYS_TO_REPLACE,
    "MAX_DOMAINS_PER_CERTIFICATE": MAX_DOMAINS_PER_CERTIFICATE,
    "HTTP_DCV_MAX_REDIRECTS": HTTP_DCV_MAX_REDIRECTS,
    "CAA_STRING": CAA_STRING,
    "SUPPORTS_WILDCARD": True,
    "CHECK_FREQUENCY": CHECK_FREQUENCY,
}
