# This file is here so that we can patch the ldap module in our tests.
import ldap
from ldap import *  # noqa: F403
from ldap import dn, sasl, schema  # noqa: F401

__version__ = ldap.__version__
