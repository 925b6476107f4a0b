"""
Django-flavored object mapping for LDAP directories.

Models declared with :py:class:`ldapmapper.models.Model` are backed by entries
in an LDAP directory; the server schema decides which object classes and
attributes are legal for each entry.
"""

__version__ = "0.9.0"
