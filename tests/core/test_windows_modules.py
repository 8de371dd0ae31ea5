# tests/core/test_windows_modules.py
"""
Тесты для ProcessEnumerator и FocusTracker.

Модули win32gui/win32process и psutil подменяются моками, поэтому
тесты не зависят от реальных окон и процессов.
"""

import psutil
import pytest
from unittest.mock import MagicMock

from src.shadowlist.core.modules import FocusTracker, ProcessEnumerator
from src.shadowlist.core.modules import focus_tracker as focus_module
from src.shadowlist.core.modules import process_enumerator as enumerator_module
from src.shadowlist.errors import ProcessListingUnavailable


def _make_process(name=None, exe=None, name_error=None, exe_error=None) -> MagicMock:
    proc = MagicMock()
    proc.name.return_value = name
    proc.exe.return_value = exe
    if name_error:
        proc.name.side_effect = name_error
    if exe_error:
        proc.exe.side_effect = exe_error
    return proc


@pytest.fixture
def fake_windows(mocker):
    """
    Подменяет win32gui/win32process набором окон: hwnd -> (pid, заголовок, видимо).
    Возвращает словарь окон, который тест может заполнить.
    """
    windows = {}

    win32gui = MagicMock()
    win32gui.EnumWindows.side_effect = lambda callback, extra: [callback(hwnd, extra) for hwnd in list(windows)]
    win32gui.IsWindowVisible.side_effect = lambda hwnd: windows[hwnd][2]
    win32gui.GetWindowText.side_effect = lambda hwnd: windows[hwnd][1]

    win32process = MagicMock()
    win32process.GetWindowThreadProcessId.side_effect = lambda hwnd: (1, windows[hwnd][0])

    for module in (enumerator_module, focus_module):
        mocker.patch.object(module, "win32gui", win32gui)
        mocker.patch.object(module, "win32process", win32process)
    return windows


@pytest.fixture
def fake_processes(mocker):
    """pid -> MagicMock процесса psutil."""
    processes = {}

    def factory(pid):
        if pid not in processes:
            raise psutil.NoSuchProcess(pid)
        return processes[pid]

    mocker.patch("psutil.Process", side_effect=factory)
    return processes


class TestProcessEnumerator:

    def test_lists_visible_titled_windows_sorted(self, fake_windows, fake_processes):
        # GIVEN
        fake_windows.update({
            100: (30, "Visual Studio Code", True),
            101: (10, "Cyberpunk 2077", True),
            102: (20, "", True),                  # без заголовка
            103: (40, "Скрытое окно", False),     # невидимое
            104: (50, "   ", True),               # пустой заголовок
        })
        fake_processes.update({
            10: _make_process("Cyberpunk2077.exe", "C:\\Games\\Cyberpunk2077.exe"),
            20: _make_process("helper.exe", "C:\\helper.exe"),
            30: _make_process("Code.exe", "C:\\VSCode\\Code.exe"),
            40: _make_process("hidden.exe", "C:\\hidden.exe"),
            50: _make_process("blank.exe", "C:\\blank.exe"),
        })

        # WHEN
        result = ProcessEnumerator().list_processes()

        # THEN
        assert [(p.process_name, p.process_id) for p in result] == [("Code.exe", 30), ("Cyberpunk2077.exe", 10)]
        assert result[1].window_title == "Cyberpunk 2077"
        assert result[1].executable_path == "C:\\Games\\Cyberpunk2077.exe"

    def test_one_entry_per_pid_first_title_wins(self, fake_windows, fake_processes):
        # GIVEN
        fake_windows.update({1: (10, "Главное окно", True), 2: (10, "Диалог", True)})
        fake_processes[10] = _make_process("app.exe", "C:\\app.exe")

        # WHEN
        result = ProcessEnumerator().list_processes()

        # THEN
        assert len(result) == 1
        assert result[0].window_title == "Главное окно"

    def test_same_executable_different_pids_sorted_by_pid(self, fake_windows, fake_processes):
        # GIVEN
        fake_windows.update({1: (20, "Окно 2", True), 2: (10, "Окно 1", True)})
        fake_processes[10] = _make_process("chrome.exe", "C:\\chrome.exe")
        fake_processes[20] = _make_process("Chrome.exe", "C:\\chrome.exe")

        # WHEN
        result = ProcessEnumerator().list_processes()

        # THEN
        assert [p.process_id for p in result] == [10, 20]

    def test_access_denied_path_becomes_none(self, fake_windows, fake_processes):
        # GIVEN
        fake_windows[1] = (10, "Диспетчер задач", True)
        fake_processes[10] = _make_process("Taskmgr.exe", exe_error=psutil.AccessDenied(10))

        # WHEN
        (result,) = ProcessEnumerator().list_processes()

        # THEN
        assert result.process_name == "Taskmgr.exe"
        assert result.executable_path is None

    def test_exited_and_nameless_processes_are_skipped(self, fake_windows, fake_processes):
        # GIVEN
        fake_windows.update({1: (10, "Ушел", True), 2: (20, "Без имени", True), 3: (30, "Есть", True)})
        # pid 10 отсутствует в fake_processes -> NoSuchProcess
        fake_processes[20] = _make_process(name_error=psutil.AccessDenied(20))
        fake_processes[30] = _make_process("ok.exe", "C:\\ok.exe")

        # WHEN
        result = ProcessEnumerator().list_processes()

        # THEN
        assert [p.process_name for p in result] == ["ok.exe"]

    def test_excluded_shell_processes(self, fake_windows, fake_processes):
        # GIVEN
        fake_windows.update({1: (10, "Program Manager", True), 2: (20, "Блокнот", True)})
        fake_processes[10] = _make_process("Explorer.EXE", "C:\\Windows\\explorer.exe")
        fake_processes[20] = _make_process("notepad.exe", "C:\\Windows\\notepad.exe")

        # WHEN
        result = ProcessEnumerator(excluded_processes=["explorer.exe"]).list_processes()

        # THEN
        assert [p.process_name for p in result] == ["notepad.exe"]

    def test_enum_windows_failure_raises(self, fake_windows, mocker):
        # GIVEN
        enumerator_module.win32gui.EnumWindows.side_effect = OSError("access denied")

        # WHEN / THEN
        with pytest.raises(ProcessListingUnavailable):
            ProcessEnumerator().list_processes()

    def test_missing_win32_modules_raise(self, mocker):
        # GIVEN
        mocker.patch.object(enumerator_module, "win32gui", None)

        # WHEN / THEN
        with pytest.raises(ProcessListingUnavailable):
            ProcessEnumerator().list_processes()


class TestFocusTracker:

    def test_returns_foreground_process(self, fake_windows, fake_processes):
        # GIVEN
        fake_windows[500] = (10, "Cyberpunk 2077", True)
        fake_processes[10] = _make_process("Cyberpunk2077.exe")
        focus_module.win32gui.GetForegroundWindow.return_value = 500

        # WHEN
        focus = FocusTracker().current_focus()

        # THEN
        assert focus.process_name == "Cyberpunk2077.exe"
        assert focus.window_title == "Cyberpunk 2077"
        assert focus.process_id == 10

    def test_no_foreground_window(self, fake_windows):
        # GIVEN
        focus_module.win32gui.GetForegroundWindow.return_value = 0

        # WHEN / THEN
        assert FocusTracker().current_focus() is None

    def test_zero_pid(self, fake_windows):
        # GIVEN
        fake_windows[500] = (0, "Экран блокировки", True)
        focus_module.win32gui.GetForegroundWindow.return_value = 500

        # WHEN / THEN
        assert FocusTracker().current_focus() is None

    def test_process_exited(self, fake_windows, fake_processes):
        # GIVEN
        fake_windows[500] = (99, "Закрывается", True)
        focus_module.win32gui.GetForegroundWindow.return_value = 500

        # WHEN / THEN
        assert FocusTracker().current_focus() is None

    def test_missing_win32_modules(self, mocker):
        # GIVEN
        mocker.patch.object(focus_module, "win32gui", None)

        # WHEN / THEN
        assert FocusTracker().current_focus() is None
