import json
import os

import admin
from conftest import ADMIN_A, ADMIN_B, CREATOR, USER


def write_admins(path, payload):
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(payload if isinstance(payload, str) else json.dumps(payload))


def read_admins(path):
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def test_init_creates_empty_file(admins_file):
    assert not os.path.exists(admins_file)
    admin.init_admin_system()
    assert read_admins(admins_file) == {"admins": []}


def test_creator_is_always_admin(admins_file):
    assert admin.is_creator(CREATOR)
    assert admin.is_admin(CREATOR)
    assert not admin.is_admin(USER)
    assert not admin.is_admin("")


def test_is_admin_reads_file_every_time(admins_file):
    admin.init_admin_system()
    assert not admin.is_admin(ADMIN_A)
    write_admins(admins_file, {"admins": [ADMIN_A]})
    assert admin.is_admin(ADMIN_A)


def test_promote_and_demote_round_trip(admins_file):
    result = admin.promote_admin(CREATOR, ADMIN_A)
    assert result.success
    assert result.message == "User promoted to admin successfully"
    assert read_admins(admins_file) == {"admins": [ADMIN_A]}

    again = admin.promote_admin(CREATOR, ADMIN_A)
    assert not again.success
    assert again.message == "User is already an admin"

    result = admin.demote_admin(CREATOR, ADMIN_A)
    assert result.success
    assert result.message == "User demoted from admin successfully"
    assert read_admins(admins_file) == {"admins": []}


def test_only_creator_can_change_roles(admins_file):
    write_admins(admins_file, {"admins": [ADMIN_A]})
    assert admin.promote_admin(ADMIN_A, ADMIN_B).message == "Only the creator can promote admins"
    assert admin.demote_admin(ADMIN_A, ADMIN_A).message == "Only the creator can demote admins"
    assert read_admins(admins_file) == {"admins": [ADMIN_A]}


def test_promote_rejects_bad_targets(admins_file):
    assert admin.promote_admin(CREATOR, "").message == "Invalid JID format"
    assert admin.promote_admin(CREATOR, "120363@g.us").message == "Invalid JID format"
    assert admin.promote_admin(CREATOR, CREATOR).message == "Creator is already admin"


def test_demote_rejects_bad_targets(admins_file):
    assert admin.demote_admin(CREATOR, "nobody").message == "Invalid JID format"
    assert admin.demote_admin(CREATOR, CREATOR).message == "Cannot demote the creator"
    assert admin.demote_admin(CREATOR, USER).message == "User is not an admin"


def test_malformed_file_is_treated_as_empty(admins_file):
    write_admins(admins_file, "{not json")
    assert admin.get_admin_list().admins == []

    write_admins(admins_file, {"admins": "oops"})
    assert admin.get_admin_list().admins == []

    write_admins(admins_file, ["a", "b"])
    assert not admin.is_admin("a")


def test_promote_reports_write_failure(admins_file, monkeypatch):
    admin.init_admin_system()

    def broken_write(admins):
        raise OSError("read-only filesystem")

    monkeypatch.setattr(admin, "_write_admins", broken_write)
    result = admin.promote_admin(CREATOR, ADMIN_A)
    assert not result.success
    assert result.message == "Failed to promote user"


def test_get_admin_list(admins_file):
    write_admins(admins_file, {"admins": [ADMIN_A, ADMIN_B]})
    admin_list = admin.get_admin_list()
    assert admin_list.creator == CREATOR
    assert admin_list.admins == [ADMIN_A, ADMIN_B]
