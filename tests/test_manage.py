import pytest

from filevault.manage import run


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{(tmp_path / 'manage.db').as_posix()}"


def test_create_user_and_issue_key(database_url, capsys):
    assert run(["create-user", "--name", "Ada", "--email", "Ada@Example.com"], database_url) == 0
    user_id = capsys.readouterr().out.strip()
    assert len(user_id) == 32

    assert run(["issue-key", "--email", "ada@example.com", "--permission", "READ"], database_url) == 0
    key = capsys.readouterr().out.strip()
    assert len(key) >= 32

    assert run(["list-keys", "--email", "ada@example.com"], database_url) == 0
    listing = capsys.readouterr().out
    assert "\tdefault\tREAD\t" in listing


def test_duplicate_email(database_url, capsys):
    run(["create-user", "--name", "Ada", "--email", "ada@example.com"], database_url)

    assert run(["create-user", "--name", "Ada 2", "--email", "ada@example.com"], database_url) == 1
    assert "already registered" in capsys.readouterr().err


def test_unknown_user(database_url, capsys):
    assert run(["issue-key", "--email", "nobody@example.com"], database_url) == 1
    assert "no user" in capsys.readouterr().err


def test_issued_key_authenticates(make_client, make_settings, capsys):
    client = make_client()
    database_url = make_settings().database_url
    run(["create-user", "--name", "Ada", "--email", "ada@example.com"], database_url)
    capsys.readouterr()
    run(["issue-key", "--email", "ada@example.com"], database_url)
    key = capsys.readouterr().out.strip()

    r = client.get("/api/files", headers={"x-api-key": key})

    assert r.status_code == 200
