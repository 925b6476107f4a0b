# mypy: disable-error-code="attr-defined"
# type: ignore
"""
Tests for models and their manager, against a fake directory.
"""

import unittest

import ldap
from django.core.exceptions import FieldDoesNotExist, ImproperlyConfigured
from ldap.controls import LDAPControl

from ldapmapper.controls import ServerSideSortControl
from ldapmapper.exceptions import EntryAlreadyExist
from ldapmapper.fields import CharField
from ldapmapper.managers import LdapManager, Modlist, sort_instances
from ldapmapper.models import Model, get_model
from ldapmapper.tests.models import Group, Role, SortedUser, User
from ldapmapper.tests.utils import (
    ADMIN_DN,
    PHOTO,
    FakeLDAPMixin,
    make_entry,
)

ALICE = "uid=alice,ou=users,dc=example,dc=com"
BOB = "uid=bob,ou=users,dc=example,dc=com"
CERTIFICATE = b"0\x0c\x02\x01\x01"


def new_user(**kwargs):
    data = {
        "uid": "erin",
        "cn": "Erin Lee",
        "sn": "Lee",
        "uidNumber": 1004,
        "gidNumber": 100001,
        "homeDirectory": "/home/erin",
    }
    data.update(kwargs)
    return User(**data)


class TestModelDeclaration(unittest.TestCase):
    def test_required_classes(self):
        self.assertEqual(User._meta.required_classes, ["inetOrgPerson", "posixAccount"])

    def test_objectclass_field_is_added(self):
        self.assertIn("objectclass", User._meta.fields_map)

    def test_basedn_defaults_to_server_basedn(self):
        self.assertEqual(Role._meta.basedn, "dc=example,dc=com")

    def test_each_model_has_its_own_does_not_exist(self):
        self.assertTrue(issubclass(User.DoesNotExist, Model.DoesNotExist))
        self.assertFalse(issubclass(User.DoesNotExist, Group.DoesNotExist))

    def test_get_model(self):
        self.assertIs(get_model("User"), User)
        with self.assertRaises(LookupError):
            get_model("NoSuchModel")

    def test_no_primary_key(self):
        with self.assertRaises(ImproperlyConfigured):

            class Keyless(Model):
                cn = CharField()

                class Meta:
                    objectclass = "person"

    def test_invalid_meta_attribute(self):
        with self.assertRaises(TypeError):

            class Odd(Model):
                cn = CharField(primary_key=True)

                class Meta:
                    objectclass = "person"
                    colour = "blue"

    def test_unknown_ldap_server(self):
        with self.assertRaises(ImproperlyConfigured):

            class Elsewhere(Model):
                cn = CharField(primary_key=True)

                class Meta:
                    ldap_server = "nowhere"
                    objectclass = "person"

    def test_objectclass_field_may_not_be_declared(self):
        with self.assertRaises(ImproperlyConfigured):

            class Manual(Model):
                cn = CharField(primary_key=True)
                classes = CharField(db_column="objectClass")

                class Meta:
                    objectclass = "person"

    def test_invalid_keyword_argument(self):
        with self.assertRaises(TypeError):
            User(uid="erin", favourite_colour="blue")

    def test_dn(self):
        self.assertEqual(User(uid="erin").dn, "uid=erin,ou=users,dc=example,dc=com")
        self.assertIsNone(User().dn)

    def test_dn_escaping(self):
        self.assertEqual(
            User.objects.get_dn("lee, erin"), "uid=lee\\, erin,ou=users,dc=example,dc=com"
        )

    def test_base_filter(self):
        self.assertEqual(
            User.objects.base_filter(),
            ["and", ["objectClass", "inetOrgPerson"], ["objectClass", "posixAccount"]],
        )

    def test_from_db_strips_attribute_options(self):
        user = User.from_db(
            ["uid", "userCertificate"],
            [(ALICE, {"UID": [b"alice"], "userCertificate;binary": [b"\x30\x82"]})],
        )
        self.assertEqual(user.uid, "alice")
        self.assertEqual(user.userCertificate, b"\x30\x82")
        self.assertFalse(user.is_new)

    def test_from_db_unknown_attribute(self):
        with self.assertRaises(FieldDoesNotExist):
            User.from_db(["favouriteColour"], [(ALICE, {})])

    def test_equality(self):
        self.assertEqual(User(uid="erin"), User(uid="erin"))
        self.assertNotEqual(User(uid="erin"), User(uid="bob"))
        self.assertNotEqual(User(uid="erin"), Group(cn="erin"))


class TestModlist(unittest.TestCase):
    def test_add(self):
        user = new_user(loginShell="")
        entries = Modlist(User.objects).add(user)
        attributes = [attribute for _, attribute, _ in entries]
        self.assertIn(("add", "uid", [b"erin"]), entries)
        self.assertIn(("add", "objectclass", [b"inetOrgPerson", b"posixAccount"]), entries)
        self.assertNotIn("loginShell", attributes)
        self.assertNotIn("jpegPhoto", attributes)

    def test_add_without_objectclasses(self):
        user = new_user()
        user.objectclass = []
        with self.assertRaises(ImproperlyConfigured):
            Modlist(User.objects).add(user)

    def test_update(self):
        user = new_user(loginShell="/bin/sh")
        original = user.to_db()[1]
        user.loginShell = None
        user.mail = "erin@example.com"
        user.uid = "erin2"
        self.assertEqual(
            Modlist(User.objects).update(user, original),
            [("replace", "mail", [b"erin@example.com"]), ("delete", "loginShell", [])],
        )

    def test_sort_instances(self):
        users = [User(uid="b", sn="x"), User(uid="a", sn="y"), User(uid="c", sn=None)]
        self.assertEqual([u.uid for u in sort_instances(users, ["uid"])], ["a", "b", "c"])
        self.assertEqual([u.uid for u in sort_instances(users, ["-uid"])], ["c", "b", "a"])
        self.assertEqual([u.uid for u in sort_instances(users, ["sn"])], ["c", "b", "a"])


class TestManagerReads(FakeLDAPMixin, unittest.TestCase):
    def test_all_is_ordered_and_filtered_by_class(self):
        self.assertEqual([u.uid for u in User.objects.all()], ["alice", "bob", "carol"])

    def test_search_filter_includes_classes(self):
        User.objects.find_all({"uid": "alice"})
        call = self.calls_to("search_ext")[0]
        self.assertEqual(
            call["filterstr"],
            "(&(&(objectClass=inetOrgPerson)(objectClass=posixAccount))(uid=alice))",
        )
        self.assertEqual(call["base"], "ou=users,dc=example,dc=com")

    def test_find_all(self):
        users = User.objects.find_all({"gidNumber": 100001}, order_by=["-uidNumber"])
        self.assertEqual([u.uid for u in users], ["carol", "alice"])

    def test_find_all_limit(self):
        self.assertEqual(len(User.objects.find_all(limit=1)), 1)

    def test_first(self):
        self.assertEqual(User.objects.first({"loginShell": "/bin/zsh"}).uid, "bob")
        self.assertIsNone(User.objects.first({"uid": "nobody"}))

    def test_count(self):
        self.assertEqual(User.objects.count(), 3)
        self.assertEqual(User.objects.count({"gidNumber": 100001}), 2)
        call = self.calls_to("search_ext")[-1]
        self.assertEqual(call["attrlist"], ["1.1"])

    def test_get(self):
        alice = User.objects.get("alice")
        self.assertEqual(alice.dn, ALICE)
        self.assertEqual(alice.cn, "Alice Smith")
        self.assertEqual(alice.uidNumber, 1001)
        self.assertEqual(
            alice.objectclass,
            ["top", "person", "organizationalPerson", "inetOrgPerson", "posixAccount"],
        )
        self.assertIsNone(alice.jpegPhoto)
        self.assertFalse(alice.is_new)
        self.assertFalse(alice.is_dirty)

    def test_get_binary_attribute(self):
        self.assertEqual(User.objects.get("carol").jpegPhoto, PHOTO)

    def test_get_missing(self):
        with self.assertRaises(User.DoesNotExist) as ctx:
            User.objects.get("nobody")
        self.assertEqual(ctx.exception.result_code, 32)

    def test_get_entry_of_another_class(self):
        # dave is an inetOrgPerson but not a posixAccount
        with self.assertRaises(User.DoesNotExist):
            User.objects.get("dave")

    def test_get_multiple(self):
        store = self.directory()
        store.register_object(
            make_entry(
                "ou=contractors,ou=users,dc=example,dc=com",
                objectClass=["organizationalUnit"],
                ou="contractors",
            )
        )
        store.register_object(
            make_entry(
                "uid=alice,ou=contractors,ou=users,dc=example,dc=com",
                objectClass=["inetOrgPerson", "posixAccount"],
                uid="alice",
            )
        )
        with self.assertRaises(User.MultipleObjectsReturned):
            User.objects.get("alice")

    def test_get_by_dn(self):
        self.assertEqual(User.objects.get_by_dn(BOB).uid, "bob")
        with self.assertRaises(User.DoesNotExist):
            User.objects.get_by_dn("uid=nobody,ou=users,dc=example,dc=com")

    def test_exists(self):
        self.assertTrue(User.objects.exists("alice"))
        self.assertTrue(User.objects.exists(ALICE))
        self.assertFalse(User.objects.exists("nobody"))
        self.assertFalse(User.objects.exists("uid=dave,ou=users,dc=example,dc=com"))
        self.assertTrue(User.objects.get("bob").exists())
        self.assertFalse(User(uid="nobody").exists())

    def test_client_side_sort(self):
        users = User.objects.find_all(order_by=["sn"])
        self.assertEqual([u.uid for u in users], ["carol", "bob", "alice"])
        self.assertIsNone(self.calls_to("search_ext")[0]["serverctrls"])

    def test_server_side_sort(self):
        users = SortedUser.objects.all()
        self.assertEqual([u.uid for u in users], ["carol", "bob", "alice"])
        controls = self.calls_to("search_ext")[0]["serverctrls"]
        self.assertEqual(len(controls), 1)
        self.assertIsInstance(controls[0], ServerSideSortControl)
        self.assertEqual(controls[0].keys, ["sn"])

    def test_one_level_scope_and_sasl_bind(self):
        roles = Role.objects.all()
        self.assertEqual([r.dn for r in roles], [ADMIN_DN])
        call = self.calls_to("sasl_interactive_bind_s")[0]
        self.assertEqual(call["auth"].cb_value_dict, {})
        self.assertEqual(
            {c.uri for c in self.fake_ldap.connections}, {"ldaps://ldap.example.com:636"}
        )
        self.assertEqual(self.calls_to("search_ext")[0]["scope"], ldap.SCOPE_ONELEVEL)

    def test_sessions_are_closed(self):
        User.objects.all()
        self.assertFalse(User.objects.has_session())
        self.assertEqual(len(self.calls_to("unbind_s")), 1)

    def test_reads_use_read_server(self):
        User.objects.all()
        searched = [c for c in self.fake_ldap.connections if "search_ext" in c.calls.names]
        self.assertEqual(len(searched), 1)
        self.assertEqual(searched[0].uri, "ldap://ldap.example.com:389")
        # The read server is plain LDAP; only the write server uses StartTLS
        self.assertFalse(searched[0].tls_enabled)

    def test_schema_is_cached_across_models(self):
        self.assertIs(User.objects.schema, Group.objects.schema)
        self.assertEqual(len(self.calls_to("read_subschemasubentry_s")), 1)

    def test_reload_schema(self):
        first = User.objects.schema
        second = User.objects.reload_schema()
        self.assertIsNot(first, second)
        self.assertIs(Group.objects.schema, second)
        self.assertEqual(len(self.calls_to("read_subschemasubentry_s")), 2)


class TestManagerWrites(FakeLDAPMixin, unittest.TestCase):
    def test_save_new(self):
        user = new_user(jpegPhoto=PHOTO)
        self.assertTrue(user.is_new)
        user.save()
        self.assertFalse(user.is_new)
        self.assertFalse(user.is_dirty)
        attrs = self.entry("uid=erin,ou=users,dc=example,dc=com")
        self.assertEqual(attrs["objectclass"], [b"inetOrgPerson", b"posixAccount"])
        self.assertEqual(attrs["jpegphoto"], [PHOTO])
        self.assertEqual(attrs["uidnumber"], [b"1004"])

    def test_writes_use_write_server(self):
        new_user().save()
        added = [c for c in self.fake_ldap.connections if "add_s" in c.calls.names]
        self.assertEqual(len(added), 1)
        self.assertTrue(added[0].tls_enabled)
        self.assertLess(
            added[0].calls.names.index("start_tls_s"), added[0].calls.names.index("add_s")
        )

    def test_save_new_adds_missing_required_classes(self):
        user = new_user(objectclass=["top"])
        user.save()
        attrs = self.entry(user.dn)
        self.assertEqual(attrs["objectclass"], [b"top", b"inetOrgPerson", b"posixAccount"])

    def test_certificate_is_sent_with_binary_option(self):
        new_user(userCertificate=CERTIFICATE).save()
        modlist = self.calls_to("add_s")[0]["modlist"]
        self.assertIn(("userCertificate;binary", [CERTIFICATE]), modlist)
        attrs = self.entry("uid=erin,ou=users,dc=example,dc=com")
        self.assertEqual(attrs["usercertificate;binary"], [CERTIFICATE])

    def test_save_with_controls(self):
        control = LDAPControl("1.2.840.113556.1.4.805", True, None)
        new_user().save(controls=[control])
        self.assertEqual(self.calls_to("add_ext_s")[0]["serverctrls"], [control])

    def test_create(self):
        user = User.objects.create(
            uid="erin",
            cn="Erin Lee",
            sn="Lee",
            uidNumber=1004,
            gidNumber=100001,
            homeDirectory="/home/erin",
        )
        self.assertFalse(user.is_new)
        self.assertTrue(User.objects.exists("erin"))

    def test_add_existing(self):
        with self.assertRaises(EntryAlreadyExist):
            new_user(uid="alice").save()

    def test_save_unchanged_sends_nothing(self):
        alice = User.objects.get("alice")
        alice.save()
        self.assertEqual(self.calls_to("modify_s", "modify_ext_s"), [])

    def test_save_changes(self):
        alice = User.objects.get("alice")
        alice.mail = "alice@example.org"
        alice.loginShell = None
        self.assertTrue(alice.is_dirty)
        self.assertEqual(sorted(alice.changed_attributes()), ["loginShell", "mail"])
        alice.save()
        modlist = self.calls_to("modify_s")[0]["modlist"]
        self.assertEqual(
            sorted(modlist, key=lambda m: m[1]),
            [
                (ldap.MOD_DELETE, "loginShell", None),
                (ldap.MOD_REPLACE, "mail", [b"alice@example.org"]),
            ],
        )
        attrs = self.entry(ALICE)
        self.assertEqual(attrs["mail"], [b"alice@example.org"])
        self.assertNotIn("loginshell", attrs)
        self.assertFalse(alice.is_dirty)

    def test_second_save_sends_only_new_changes(self):
        alice = User.objects.get("alice")
        alice.mail = "alice@example.org"
        alice.save()
        alice.sn = "Smythe"
        alice.save()
        modlist = self.calls_to("modify_s")[1]["modlist"]
        self.assertEqual(modlist, [(ldap.MOD_REPLACE, "sn", [b"Smythe"])])

    def test_rename_by_changing_primary_key(self):
        bob = User.objects.get("bob")
        bob.uid = "robert"
        bob.save()
        self.assertEqual(bob.dn, "uid=robert,ou=users,dc=example,dc=com")
        self.assertIsNone(self.entry(BOB))
        attrs = self.entry(bob.dn)
        self.assertEqual(attrs["uid"], [b"robert"])
        self.assertEqual(self.calls_to("modrdn_s")[0]["newrdn"], "uid=robert")
        self.assertEqual(self.calls_to("modify_s"), [])

    def test_manager_rename_to_new_parent(self):
        User.objects.rename(BOB, "uid=bob,dc=example,dc=com")
        call = self.calls_to("rename_s")[0]
        self.assertEqual(call["newrdn"], "uid=bob")
        self.assertEqual(call["newsuperior"], "dc=example,dc=com")

    def test_manager_rename_in_place(self):
        User.objects.rename(BOB, "uid=robert,ou=users,dc=example,dc=com")
        self.assertEqual(len(self.calls_to("modrdn_s")), 1)

    def test_delete(self):
        carol = User.objects.get("carol")
        carol.delete()
        self.assertIsNone(self.entry("uid=carol,ou=users,dc=example,dc=com"))
        self.assertTrue(carol.is_new)
        self.assertFalse(carol.exists())

    def test_delete_then_save_adds_again(self):
        carol = User.objects.get("carol")
        carol.delete()
        carol.save()
        self.assertIsNotNone(self.entry("uid=carol,ou=users,dc=example,dc=com"))

    def test_manager_delete(self):
        User.objects.delete("carol")
        self.assertFalse(User.objects.exists("carol"))
        with self.assertRaises(User.DoesNotExist):
            User.objects.delete("carol")

    def test_reload_discards_changes(self):
        alice = User.objects.get("alice")
        alice.mail = "changed@example.com"
        alice.reload()
        self.assertEqual(alice.mail, "alice@example.com")
        self.assertFalse(alice.is_dirty)

    def test_reload_sees_server_changes(self):
        alice = User.objects.get("alice")
        self.directory().update(ALICE, [(ldap.MOD_REPLACE, "cn", [b"Alice Jones"])])
        alice.reload()
        self.assertEqual(alice.cn, "Alice Jones")

    def test_reload_deleted_entry(self):
        alice = User.objects.get("alice")
        self.directory().delete(ALICE)
        with self.assertRaises(User.DoesNotExist):
            alice.reload()

    def test_schema_shared_by_write_session(self):
        new_user().save()
        User.objects.get("alice").save()
        self.assertEqual(len(self.calls_to("read_subschemasubentry_s")), 1)


class TestAuthenticate(FakeLDAPMixin, unittest.TestCase):
    def test_valid_password(self):
        self.assertTrue(User.objects.authenticate("alice", "alice-password"))
        binds = self.calls_to("simple_bind_s")
        self.assertEqual(binds[-1]["who"], ALICE)

    def test_invalid_password(self):
        with self.assertLogs("django-ldapmapper", level="WARNING"):
            self.assertFalse(User.objects.authenticate("alice", "wrong"))

    def test_empty_password(self):
        self.assertFalse(User.objects.authenticate("alice", ""))
        self.assertEqual(len(self.calls_to("simple_bind_s")), 1)

    def test_unknown_user(self):
        self.assertFalse(User.objects.authenticate("nobody", "whatever"))

    def test_session_is_unbound(self):
        User.objects.authenticate("alice", "alice-password")
        self.assertTrue(all("unbind_s" in c.calls.names for c in self.fake_ldap.connections))


class TestManagerConfiguration(unittest.TestCase):
    def test_write_falls_back_to_read(self):
        self.assertEqual(
            Role.objects._session_config("write"), Role.objects._session_config("read")
        )

    def test_new_session_uses_cached_schema(self):
        schema = object()
        LdapManager._schema_cache["default"] = schema
        self.addCleanup(LdapManager._schema_cache.clear)
        self.assertIs(User.objects.new_session()._schema, schema)
