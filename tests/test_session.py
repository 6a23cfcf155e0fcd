from __future__ import annotations

import atexit
import json
import os
import sys
import threading
import time
from pathlib import Path

import pytest
from conftest import read_line, wait_ready

from jdbsession import Session, SessionBuilder, SessionStateError
from jdbsession.session import _split, build_argv

posix_only = pytest.mark.skipif(os.name == "nt", reason="relies on POSIX signals")


def is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    # an orphan waiting to be reaped still answers signal 0
    stat = Path(f"/proc/{pid}/stat")
    try:
        return stat.read_text().rpartition(")")[2].split()[0] != "Z"
    except OSError:
        return False


def assert_output_released(session: Session) -> None:
    assert session.process is not None
    assert session.process.stdout is not None
    assert session.process.stdout.closed
    names = {thread.name for thread in threading.enumerate()}
    assert f"session-output-{session.pid}" not in names


class TestBuildArgv:
    def test_order(self) -> None:
        assert build_argv(
            "jdb",
            src_path="src",
            class_path="@/tmp/argfile",
            class_signature="calc.Calculator",
            class_args="1 '2 3'",
        ) == [
            "jdb",
            "-sourcepath",
            "src",
            "-classpath",
            "@/tmp/argfile",
            "calc.Calculator",
            "1 '2 3'",
        ]

    def test_empty_entry_point_is_left_out(self) -> None:
        argv = build_argv("jdb", src_path="", class_path="", class_signature="")
        assert argv == ["jdb", "-sourcepath", "", "-classpath", ""]

    def test_program_carries_leading_arguments(self) -> None:
        argv = build_argv("jdb -J-Xmx256m", src_path="", class_path="")
        assert argv[:2] == ["jdb", "-J-Xmx256m"]

    def test_unbalanced_quote_in_program(self) -> None:
        with pytest.raises(SessionStateError, match="Invalid program"):
            build_argv('jdb "-J-Xmx256m', src_path="", class_path="")

    @pytest.mark.parametrize(
        ("command", "expected"),
        [
            (
                r'"C:\Program Files\jdb" -J-Xmx256m',
                [r"C:\Program Files\jdb", "-J-Xmx256m"],
            ),
            (r"C:\jdk\bin\jdb.exe", [r"C:\jdk\bin\jdb.exe"]),
        ],
    )
    def test_windows_quoted_program(self, command: str, expected: list[str]) -> None:
        assert _split(command, posix=False) == expected

    @pytest.mark.parametrize(
        ("src_path", "class_path", "message"),
        [
            ("src", None, "Class path cannot be empty"),
            (None, "classes", "Source path cannot be empty"),
        ],
    )
    def test_missing_paths(
        self, src_path: str | None, class_path: str | None, message: str
    ) -> None:
        with pytest.raises(SessionStateError, match=message):
            build_argv("jdb", src_path=src_path, class_path=class_path)


class TestSessionBuilder:
    def test_defaults(self) -> None:
        session = SessionBuilder().build()
        assert session.argv == ["jdb", "-sourcepath", "", "-classpath", ""]
        assert session.cwd is None
        assert session.env is None
        assert not session.is_running()

    def test_relativizes_against_working_directory(self, tmp_path: Path) -> None:
        workdir = tmp_path / "target" / "test-classes"
        session = (
            SessionBuilder()
            .working_directory(workdir)
            .class_path([workdir])
            .src_path([workdir.parent.parent / "src" / "test java"])
            .class_signature("calc.Calculator")
            .build()
        )

        assert session.cwd == workdir
        assert session.argv == [
            "jdb",
            "-sourcepath",
            str(Path("..", "..", "src", "test%20java")),
            "-classpath",
            ".",
            "calc.Calculator",
        ]

    def test_long_class_path_goes_to_argument_file(self, tmp_path: Path) -> None:
        jars = [tmp_path / f"lib{index}.jar" for index in range(10)]
        session = (
            SessionBuilder()
            .working_directory(tmp_path)
            .class_path(jars)
            .argfile_threshold(20)
            .argfile_directory(tmp_path / "argfiles")
            .build()
        )

        class_path = session.argv[session.argv.index("-classpath") + 1]
        assert class_path.startswith("@")
        argfile = Path(class_path[1:])
        assert argfile.parent == tmp_path / "argfiles"
        assert argfile.read_text().splitlines() == [str(jar) for jar in jars]

    def test_unwritable_argument_directory_falls_back(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        session = (
            SessionBuilder()
            .working_directory(tmp_path)
            .class_path([tmp_path / "a.jar", tmp_path / "b.jar"])
            .argfile_threshold(1)
            .argfile_directory(blocker)
            .build()
        )

        assert session.argv[-1] == os.pathsep.join(["a.jar", "b.jar"])

    def test_supplied_argument_file_is_used_as_is(self, tmp_path: Path) -> None:
        argfile = tmp_path / "classpath.txt"
        session = (
            SessionBuilder()
            .class_path([tmp_path / "ignored.jar"])
            .argument_file(argfile)
            .argfile_directory(tmp_path / "argfiles")
            .build()
        )

        assert session.argv[-1] == f"@{argfile}"
        assert not argfile.exists()
        assert not (tmp_path / "argfiles").exists()

    def test_class_args_stay_one_argument(self) -> None:
        session = (
            SessionBuilder()
            .class_signature("calc.Calculator")
            .class_args("don't")
            .build()
        )
        assert session.argv[-2:] == ["calc.Calculator", "don't"]

    def test_build_is_repeatable(self, builder: SessionBuilder) -> None:
        assert builder.build().argv == builder.build().argv
        assert builder.build() is not builder.build()


class TestSessionLifecycle:
    def test_unstarted_session(self) -> None:
        session = SessionBuilder().build()

        assert session.read() == ""
        assert session.read_all() == []
        assert not session.is_ready()
        assert not session.is_running()
        assert session.wait_for() is None
        assert session.pid is None
        with pytest.raises(SessionStateError, match="Input is closed"):
            session.send("run")
        session.quit()
        session.force_quit()

    def test_spawn_failure(self, tmp_path: Path) -> None:
        session = SessionBuilder().program(str(tmp_path / "no-such-debugger")).build()

        with pytest.raises(OSError):
            session.start()
        assert session.process is None
        assert not session.is_running()

    def test_arguments_reach_the_process(self, builder: SessionBuilder) -> None:
        session = builder.class_signature("calc.Calculator").class_args("a b").build()
        session.start()
        try:
            assert read_line(session) == "ready"
            session.send("argv")
            assert json.loads(read_line(session)) == [
                "-sourcepath",
                "",
                "-classpath",
                "",
                "calc.Calculator",
                "a b",
            ]
            session.send("cwd")
            assert Path(read_line(session)).resolve() == builder.build().cwd.resolve()
        finally:
            session.quit()

    def test_env_reaches_the_process(self, builder: SessionBuilder) -> None:
        env = {**os.environ, "JDBSESSION_TEST": "hello"}
        session = builder.env(env).build()
        session.start()
        try:
            assert read_line(session) == "ready"
            session.send("env JDBSESSION_TEST")
            assert read_line(session) == "hello"
        finally:
            session.quit()

    def test_request_response(self, session: Session) -> None:
        session.send("clear", "run calc.Calculator", "stop at calc.Calculator:8")

        assert read_line(session) == "> clear"
        assert read_line(session) == "> run calc.Calculator"
        assert read_line(session) == "> stop at calc.Calculator:8"
        assert session.read_all() == []

    def test_read_all_collects_burst(self, session: Session) -> None:
        session.send("burst 50", "echo done")

        lines: list[str] = []
        while "done" not in lines:
            wait_ready(session)
            lines.extend(session.read_all())
        assert lines == [*(f"line {i}" for i in range(50)), "done"]
        assert not session.is_ready()

    def test_prompt_joins_the_next_line(self, session: Session) -> None:
        session.send("prompt main[1] ", "echo")
        assert read_line(session) == "main[1] "

    def test_process_exit_is_detected(self, session: Session) -> None:
        session.send("exit 3")

        assert session.wait_for(10) == 3
        assert not session.is_running()
        assert session.returncode == 3
        assert session.read() == ""
        session.send("ignored")
        session.quit()

    def test_quit(self, session: Session) -> None:
        session.quit()

        assert not session.is_running()
        assert session.read() == ""
        assert session.read_all() == []
        assert not session.is_ready()
        session.quit()

    def test_quit_releases_output_pipe(self, session: Session) -> None:
        session.quit()

        assert_output_released(session)

    def test_force_quit_releases_output_pipe(self, session: Session) -> None:
        session.force_quit()

        assert_output_released(session)

    def test_send_after_quit_raises(self, session: Session) -> None:
        session.quit()

        with pytest.raises(SessionStateError, match="Input is closed"):
            session.send("cont")
        with pytest.raises(SessionStateError, match="Input is closed"):
            session.send("clear", "cont")

    def test_cannot_restart(self, session: Session) -> None:
        session.quit()

        with pytest.raises(SessionStateError, match="already started"):
            session.start()

    @posix_only
    def test_force_quit_kills_stuck_process(self, session: Session) -> None:
        session.send("ignore-term")
        assert read_line(session) == "ignoring SIGTERM"

        session.force_quit()

        assert not session.is_running()
        assert session.returncode == -9
        session.force_quit()
        session.quit()

    @posix_only
    @pytest.mark.skipif(not Path("/proc").is_dir(), reason="needs /proc")
    def test_force_quit_kills_descendants(self, session: Session) -> None:
        session.send("spawn-child")
        child = int(read_line(session))

        session.force_quit()

        deadline = time.monotonic() + 5
        while is_alive(child):
            assert time.monotonic() < deadline, f"pid {child} survived force_quit"
            time.sleep(0.05)
        assert_output_released(session)

    def test_context_manager_quits(self, builder: SessionBuilder) -> None:
        with builder.build().run() as session:
            assert read_line(session) == "ready"
            assert session.is_running()
        assert not session.is_running()


class TestCleanup:
    def test_cleanup_kills_and_is_idempotent(self, builder: SessionBuilder) -> None:
        session = builder.build()
        cleanup = session.start()
        assert read_line(session) == "ready"

        cleanup()
        cleanup()

        assert not session.is_running()
        assert not session.is_ready()
        with pytest.raises(SessionStateError):
            session.send("cont")
        session.quit()

    def test_run_registers_and_quit_unregisters(
        self, builder: SessionBuilder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        registered: list[object] = []
        monkeypatch.setattr(atexit, "register", registered.append)
        monkeypatch.setattr(atexit, "unregister", registered.remove)

        session = builder.build().run()
        assert registered == [session._cleanup]

        session.quit()
        assert registered == []

    def test_quit_after_cleanup_does_not_raise(self, builder: SessionBuilder) -> None:
        session = builder.build()
        cleanup = session.start()

        cleanup()
        session.quit()
        session.force_quit()
        assert not session.is_running()


class FakeProcess:
    pid = 4242
    stdin = None
    stdout = None

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.alive = True

    @property
    def returncode(self) -> int | None:
        return None if self.alive else 0

    def is_running(self) -> bool:
        return self.alive

    def terminate(self) -> None:
        self.calls.append("terminate")
        self.alive = False

    def kill(self) -> None:
        self.calls.append("kill")
        self.alive = False

    def wait(self, timeout: float | None = None) -> int:
        self.calls.append("wait")
        return 0


class TestWithFakeProcess:
    def test_quit_terminates_then_waits(self) -> None:
        process = FakeProcess()
        session = Session(["jdb"], spawner=lambda argv, **kwargs: process)
        session.start()

        session.quit()
        session.quit()

        assert process.calls == ["terminate", "wait", "wait"]

    def test_force_quit_kills(self) -> None:
        process = FakeProcess()
        session = Session(["jdb"], spawner=lambda argv, **kwargs: process)
        session.start()

        session.force_quit()

        assert process.calls == ["kill"]
        assert not session.is_running()

    def test_spawner_receives_argv_and_cwd(self, tmp_path: Path) -> None:
        seen = {}

        def spawner(argv, *, cwd, env):
            seen.update(argv=argv, cwd=cwd, env=env)
            return FakeProcess()

        session = Session(
            [sys.executable, "-V"], cwd=tmp_path, env={"A": "1"}, spawner=spawner
        )
        session.start()

        assert seen == {"argv": [sys.executable, "-V"], "cwd": tmp_path, "env": {"A": "1"}}
