"""
Tests for replystore.cli — end-to-end command behavior and exit codes.

Each test runs the CLI in a subprocess against a temporary database.
"""

import json
import os
import subprocess
import sys

import pytest


EDITOR = "tester!t@example.org"
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def clean_env():
    env = {k: v for k, v in os.environ.items() if not k.startswith("REPLYSTORE_")}
    env["PYTHONPATH"] = ROOT + os.pathsep + env.get("PYTHONPATH", "")
    return env


def run(tmp_path, *args, db=None, stdin=None, env_extra=None):
    env = clean_env()
    if env_extra:
        env.update(env_extra)
    cmd = [sys.executable, "-m", "replystore.cli", args[0]]
    cmd += ["--db", db or str(tmp_path / "replies.db"), "--editor", EDITOR]
    cmd += list(args[1:])
    return subprocess.run(
        cmd, capture_output=True, text=True, input=stdin, cwd=str(tmp_path), env=env,
        timeout=60,
    )


def ok(result):
    assert result.returncode == 0, result.stderr
    return result.stdout


class TestInit:
    def test_init_scaffolds(self, tmp_path):
        target = tmp_path / "store"
        env = clean_env()
        r = subprocess.run(
            [sys.executable, "-m", "replystore.cli", "init", str(target)],
            capture_output=True, text=True, cwd=str(tmp_path), env=env, timeout=60,
        )
        assert r.returncode == 0, r.stderr
        assert (target / "replies.db").exists()
        cfg = json.loads((target / "config.json").read_text())
        assert cfg["alias"]["max_alias_depth"] == 3
        assert cfg["store"]["db_path"].endswith("replies.db")
        assert "export REPLYSTORE_DB=" in r.stdout
        assert "export REPLYSTORE_CONFIG=" in r.stdout

    def test_no_command_exits_1(self, tmp_path):
        r = subprocess.run(
            [sys.executable, "-m", "replystore.cli"],
            capture_output=True, text=True, cwd=str(tmp_path), env=clean_env(), timeout=60,
        )
        assert r.returncode == 1


class TestLearnAndGet:
    def test_learn_get(self, tmp_path):
        assert ok(run(tmp_path, "learn", "Hello", "Hi", "there")).strip() == "Learned reply 'Hello'."
        assert ok(run(tmp_path, "get", "hello")).strip() == "Hi there"

    def test_act(self, tmp_path):
        ok(run(tmp_path, "learn", "dance", "dances", "--act"))
        assert ok(run(tmp_path, "get", "dance")).strip() == "/me dances"

    def test_is(self, tmp_path):
        ok(run(tmp_path, "learn", "python", "a", "language", "--is"))
        assert ok(run(tmp_path, "get", "python")).strip() == "python is a language"

    def test_get_json(self, tmp_path):
        ok(run(tmp_path, "learn", "k", "v"))
        data = json.loads(ok(run(tmp_path, "get", "k", "--json")))
        assert data == {"intent": "say", "message": "v"}

    def test_missing_reply(self, tmp_path):
        r = run(tmp_path, "get", "nope")
        assert r.returncode == 1
        assert "No such reply 'nope' found." in r.stderr

    def test_at_symbol_rejected(self, tmp_path):
        r = run(tmp_path, "learn", "a@b", "x")
        assert r.returncode == 1
        assert "'@'" in r.stderr

    def test_list(self, tmp_path):
        ok(run(tmp_path, "learn", "b", "x"))
        ok(run(tmp_path, "learn", "a", "y"))
        assert ok(run(tmp_path, "list")).split() == ["a", "b"]

    def test_key_whitespace_collapsed(self, tmp_path):
        ok(run(tmp_path, "learn", " good   morning ", "hi"))
        assert ok(run(tmp_path, "get", "good morning")).strip() == "hi"
        assert ok(run(tmp_path, "get", "  Good  Morning")).strip() == "hi"
        data = json.loads(ok(run(tmp_path, "show", " good  morning ", "--json")))
        assert data["key"] == "good morning"

    def test_addressed_say(self, tmp_path):
        ok(run(tmp_path, "learn", "k", "hello"))
        assert ok(run(tmp_path, "get", "k", "--to", "alice")).strip() == "alice: hello"

    def test_addressed_act_unchanged(self, tmp_path):
        ok(run(tmp_path, "learn", "dance", "dances", "--act"))
        assert ok(run(tmp_path, "get", "dance", "--to", "alice")).strip() == "/me dances"


class TestAlias:
    def test_alias_followed(self, tmp_path):
        ok(run(tmp_path, "learn", "greeting", "hello"))
        out = ok(run(tmp_path, "alias", "hi", "greeting"))
        assert out.strip() == "Learned alias 'hi' => 'greeting'."
        assert ok(run(tmp_path, "get", "hi")).strip() == "hello"

    def test_depth_exceeded(self, tmp_path):
        ok(run(tmp_path, "alias", "a", "b"))
        ok(run(tmp_path, "alias", "b", "c"))
        ok(run(tmp_path, "alias", "c", "d"))
        ok(run(tmp_path, "learn", "d", "end"))
        r = run(tmp_path, "get", "a")
        assert r.returncode == 1
        assert "Max alias depth reached" in r.stderr

    def test_show_trace(self, tmp_path):
        ok(run(tmp_path, "learn", "greeting", "hello"))
        ok(run(tmp_path, "alias", "hi", "greeting"))
        data = json.loads(ok(run(tmp_path, "show", "hi", "--trace", "--json")))
        assert data["trace"] == ["hi", "greeting"]
        assert data["resolved"]["message"] == "hello"
        assert data["record"]["intent"] == "alias"


class TestEdit:
    def test_edit(self, tmp_path):
        ok(run(tmp_path, "learn", "k", "hello", "world"))
        out = ok(run(tmp_path, "edit", "k", "s/world/there/"))
        assert out.strip() == "Successfully did replacement on 'k'."
        assert ok(run(tmp_path, "get", "k")).strip() == "hello there"

    def test_append(self, tmp_path):
        ok(run(tmp_path, "learn", "k", "hello"))
        ok(run(tmp_path, "append", "k", "again"))
        assert ok(run(tmp_path, "get", "k")).strip() == "hello again"

    @pytest.mark.parametrize("expr,message", [
        ("s/x/y/", "had no effect"),
        ("s/.*//", "Would leave reply empty"),
        ("x/y", "Expected s/find/replace/flags"),
        ("s/(/y/", "RegExp invalid"),
    ])
    def test_edit_failures(self, tmp_path, expr, message):
        ok(run(tmp_path, "learn", "k", "hello"))
        r = run(tmp_path, "edit", "k", expr)
        assert r.returncode == 1
        assert message in r.stderr

    def test_edit_missing(self, tmp_path):
        r = run(tmp_path, "edit", "nope", "s/a/b/")
        assert r.returncode == 1
        assert "does not exist" in r.stderr


class TestForgetAndLock:
    def test_forget(self, tmp_path):
        ok(run(tmp_path, "learn", "k", "v"))
        assert ok(run(tmp_path, "forget", "k")).strip() == "Forgotten reply 'k'."
        assert run(tmp_path, "get", "k").returncode == 1
        assert run(tmp_path, "forget", "k").returncode == 1

    def test_locked_reply_rejects_edits(self, tmp_path):
        ok(run(tmp_path, "learn", "k", "v"))
        assert ok(run(tmp_path, "lock", "K")).strip() == "Locked reply 'k'."
        r = run(tmp_path, "learn", "k", "w")
        assert r.returncode == 1
        assert "locked" in r.stderr
        assert run(tmp_path, "forget", "k").returncode == 1

        assert ok(run(tmp_path, "unlock", "k")).strip() == "Unlocked reply 'k'."
        ok(run(tmp_path, "learn", "k", "w"))
        assert ok(run(tmp_path, "get", "k")).strip() == "w"

    def test_admin_may_edit_locked(self, tmp_path):
        cfg = tmp_path / "config.json"
        cfg.write_text(json.dumps({"auth": {"admins": ["tester!*@*"]}}))
        ok(run(tmp_path, "learn", "k", "v"))
        ok(run(tmp_path, "lock", "k"))
        ok(run(tmp_path, "learn", "k", "w", "--config", str(cfg)))
        assert ok(run(tmp_path, "get", "k")).strip() == "w"

    def test_unlock_unknown(self, tmp_path):
        assert run(tmp_path, "unlock", "nope").returncode == 1


class TestPolicy:
    def test_twitch_guard(self, tmp_path):
        cfg = tmp_path / "config.json"
        cfg.write_text(json.dumps({"policy": {"daemon": "twitch"}}))
        r = run(tmp_path, "learn", "k", "!ban", "everyone", env_extra={"REPLYSTORE_CONFIG": str(cfg)})
        assert r.returncode == 1
        assert "Twitch command" in r.stderr


class TestMaintenance:
    def test_stats_json(self, tmp_path):
        ok(run(tmp_path, "learn", "a", "x"))
        ok(run(tmp_path, "learn", "b", "y", "--act"))
        ok(run(tmp_path, "forget", "a"))
        stats = json.loads(ok(run(tmp_path, "stats", "--json")))
        assert stats["status"] == "ok"
        assert stats["replies"] == 1
        assert stats["tombstones"] == 1
        assert stats["by_intent"] == {"act": 1}
        assert stats["log_entries"] == 3

    def test_compact(self, tmp_path):
        ok(run(tmp_path, "learn", "a", "x"))
        ok(run(tmp_path, "edit", "a", "s/x/y/"))
        data = json.loads(ok(run(tmp_path, "compact", "--json")))
        assert data["entries_before"] == 2
        assert data["entries_after"] == 1
        assert ok(run(tmp_path, "get", "a")).strip() == "y"

    def test_export_import(self, tmp_path):
        ok(run(tmp_path, "learn", "a", "x"))
        ok(run(tmp_path, "alias", "b", "a"))
        dump = ok(run(tmp_path, "export"))
        assert len(dump.splitlines()) == 2

        other = str(tmp_path / "other.db")
        out = ok(run(tmp_path, "import", "-", "--json", db=other, stdin=dump))
        assert json.loads(out)["imported"] == 2
        assert ok(run(tmp_path, "get", "b", db=other)).strip() == "x"

    def test_export_missing_database(self, tmp_path):
        missing = tmp_path / "typo" / "replies.db"
        r = run(tmp_path, "export", db=str(missing))
        assert r.returncode == 1
        assert "No reply database" in r.stderr
        assert not missing.parent.exists()

    def test_import_missing_file(self, tmp_path):
        r = run(tmp_path, "import", str(tmp_path / "nope.jsonl"))
        assert r.returncode == 1
