import os
import signal
import sys

import pytest

from codecollab.session.file_tree import file_node
from codecollab.session.sandbox import SERVER_URL_RE, LocalSandbox


@pytest.fixture
def sandbox(tmp_path):
    return LocalSandbox(tmp_path)


async def collect(process):
    return [line async for line in process.output()]


class TestMount:
    async def test_flat_paths(self, sandbox, tmp_path):
        await sandbox.mount({
            "package.json": file_node('{"name": "demo"}'),
            "src/app.js": file_node("console.log(1)"),
        })

        assert (tmp_path / "package.json").read_text() == '{"name": "demo"}'
        assert (tmp_path / "src" / "app.js").read_text() == "console.log(1)"

    async def test_nested_directories(self, sandbox, tmp_path):
        await sandbox.mount({"src": {"directory": {"index.js": file_node("x")}}})

        assert (tmp_path / "src" / "index.js").read_text() == "x"

    async def test_remount_overwrites(self, sandbox, tmp_path):
        await sandbox.mount({"a.js": file_node("1")})
        await sandbox.mount({"a.js": file_node("2")})

        assert (tmp_path / "a.js").read_text() == "2"

    async def test_remount_drops_files_missing_from_tree(self, sandbox, tmp_path):
        await sandbox.mount({"a.js": file_node("a"), "b.js": file_node("b"), "lib/c.js": file_node("c")})
        await sandbox.mount({"a.js": file_node("new a")})

        assert (tmp_path / "a.js").read_text() == "new a"
        assert not (tmp_path / "b.js").exists()
        assert not (tmp_path / "lib").exists()

    async def test_remount_keeps_installed_dependencies(self, sandbox, tmp_path):
        (tmp_path / "node_modules" / "express").mkdir(parents=True)
        (tmp_path / "node_modules" / "express" / "index.js").write_text("module.exports = {}")

        await sandbox.mount({"index.js": file_node("require('express')")})

        assert (tmp_path / "node_modules" / "express" / "index.js").exists()

    @pytest.mark.parametrize("path", ["../escape.js", "src/../../escape.js", "/etc/escape.js"])
    async def test_paths_outside_root_are_rejected(self, sandbox, tmp_path, path):
        await sandbox.mount({"keep.js": file_node("kept")})

        with pytest.raises(ValueError):
            await sandbox.mount({"other.js": file_node("x"), path: file_node("nope")})

        assert (tmp_path / "keep.js").read_text() == "kept"
        assert not (tmp_path / "other.js").exists()

    async def test_own_temporary_root_is_cleaned_up(self):
        sandbox = LocalSandbox()
        await sandbox.mount({"a.js": file_node("1")})
        assert (sandbox.root / "a.js").exists()

        sandbox.cleanup()

        assert not sandbox.root.exists()


class TestSpawn:
    async def test_output_and_exit_code(self, sandbox):
        process = await sandbox.spawn(sys.executable, ["-c", "print('one'); print('two')"])

        assert await collect(process) == ["one", "two"]
        assert await process.wait() == 0

    async def test_runs_inside_root(self, sandbox, tmp_path):
        await sandbox.mount({"hello.txt": file_node("from the tree")})
        process = await sandbox.spawn(sys.executable, ["-c", "print(open('hello.txt').read())"])

        assert await collect(process) == ["from the tree"]

    async def test_server_ready_fires_once(self, sandbox):
        calls = []
        sandbox.on_server_ready(lambda port, url: calls.append((port, url)))
        script = "print('compiling'); print('Local: http://localhost:5173/'); print('again http://localhost:5173/')"

        process = await sandbox.spawn(sys.executable, ["-c", script])
        await collect(process)
        await process.wait()

        assert calls == [(5173, "http://localhost:5173/")]

    async def test_async_server_ready_handler(self, sandbox):
        calls = []

        async def handler(port, url):
            calls.append(port)

        sandbox.on_server_ready(handler)
        process = await sandbox.spawn(sys.executable, ["-c", "print('listening on http://127.0.0.1:3000')"])
        await process.wait()

        assert calls == [3000]

    async def test_kill(self, sandbox):
        process = await sandbox.spawn(sys.executable, ["-c", "import time; time.sleep(30)"])

        process.kill()

        assert await process.wait() != 0
        process.kill()

    @pytest.mark.skipif(not hasattr(os, "killpg"), reason="process groups are POSIX only")
    async def test_kill_takes_down_child_processes(self, sandbox, monkeypatch):
        signalled = []
        real_killpg = os.killpg

        def killpg(pgid, sig):
            signalled.append((pgid, sig))
            real_killpg(pgid, sig)

        monkeypatch.setattr(os, "killpg", killpg)
        script = "import subprocess, sys, time; subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)']); time.sleep(30)"
        process = await sandbox.spawn(sys.executable, ["-c", script])

        assert os.getpgid(process.pid) == process.pid

        process.kill()

        assert await process.wait() != 0
        assert signalled == [(process.pid, signal.SIGKILL)]


@pytest.mark.parametrize("line, port", [
    ("  > Local: http://localhost:5173/", 5173),
    ("Server running at http://0.0.0.0:8080", 8080),
    ("ready - started server on [::]:3000, url: http://[::]:3000", 3000),
])
def test_server_url_pattern(line, port):
    match = SERVER_URL_RE.search(line)
    assert match is not None
    assert int(match.group(2)) == port


def test_server_url_pattern_ignores_remote_hosts():
    assert SERVER_URL_RE.search("see https://example.com:443/docs") is None
