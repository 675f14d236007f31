# -*- coding: utf-8 -*-
"""
Desktop shell.

dependency:
  pip install pyqt6 selenium-wire selenium boto3
"""

from __future__ import annotations
import sys, logging
from typing import Callable, Optional

from PyQt6.QtCore import Qt, QThread, pyqtSignal, QObject, QSettings, QByteArray, QUrl
from PyQt6.QtGui import QDesktopServices, QIcon
from PyQt6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QLabel, QPushButton, QCheckBox,
    QSpinBox, QLineEdit, QTextEdit, QGridLayout, QHBoxLayout, QVBoxLayout,
    QListWidget, QListWidgetItem, QMessageBox, QSplitter
)

from .capture import AssertionCapture
from .config import (APP_NAME, APP_TITLE, PROFILES_FILE, SETTINGS_FILE,
                     credentials_path, resource_path)
from .credentials_file import CredentialsFile
from .edge_surface import EdgeLoginSurface
from .federation import FederationExchange
from .logs import LogFormatter, configure_logging
from .manager import ActionResult, SessionManager
from .profiles import Profile, ProfileStore, RenewalSettings, SettingsStore

log = logging.getLogger(__name__)
APP_ICON_PATH = resource_path("icon.png")


class LogBridge(QObject):
    line = pyqtSignal(str)


class QtLogHandler(logging.Handler):
    """Forwards formatted records to the log pane, from any thread."""

    def __init__(self):
        super().__init__()
        self.bridge = LogBridge()
        self.setFormatter(LogFormatter())

    def emit(self, record):
        self.bridge.line.emit(self.format(record))


def build_manager() -> SessionManager:
    return SessionManager(
        profiles=ProfileStore(PROFILES_FILE),
        settings=SettingsStore(SETTINGS_FILE),
        credentials=CredentialsFile(credentials_path()),
        capture=AssertionCapture(lambda silent: EdgeLoginSurface(silent=silent)),
        federation=FederationExchange(),
    )


# ---------------- Worker ----------------
class Worker(QObject):
    done = pyqtSignal(object)   # ActionResult
    finished = pyqtSignal()

    def __init__(self, fn: Callable[[], ActionResult]):
        super().__init__()
        self.fn = fn

    def run(self):
        try:
            self.done.emit(self.fn())
        except Exception as e:
            log.exception("Worker failed")
            self.done.emit(ActionResult(False, str(e)))
        finally:
            self.finished.emit()


# ---------------- GUI ----------------
class MainWindow(QMainWindow):
    def __init__(self, manager: SessionManager):
        super().__init__()
        self.manager = manager
        self.setWindowTitle(APP_TITLE)
        self.setWindowIcon(QIcon(APP_ICON_PATH))
        self.setMinimumSize(900, 600)

        self.alias_edit = QLineEdit()
        self.profile_name_edit = QLineEdit()
        self.role_arn_edit = QLineEdit()
        self.idp_arn_edit = QLineEdit()
        self.url_edit = QLineEdit()
        self.add_btn = QPushButton("Add Profile")
        self.delete_btn = QPushButton("Delete")

        self.profile_list = QListWidget()
        self.activate_btn = QPushButton("Activate / Refresh")
        self.deactivate_btn = QPushButton("Sign out")
        self.console_btn = QPushButton("Open Console")

        s = manager.get_auto_refresh_settings()
        self.auto_chk = QCheckBox("Auto renew"); self.auto_chk.setChecked(s.enabled)
        self.lead_spin = QSpinBox(); self.lead_spin.setRange(1, 120); self.lead_spin.setValue(s.lead_minutes)
        self.silent_chk = QCheckBox("Quiet Mode"); self.silent_chk.setChecked(s.silent)
        self.save_settings_btn = QPushButton("Apply")

        self.status_lbl = QLabel("Idle")
        self.clear_btn = QPushButton("Clear Log")
        self.log_txt = QTextEdit(); self.log_txt.setReadOnly(True)

        g = QGridLayout()
        r = 0
        g.addWidget(QLabel("Alias"), r, 0); g.addWidget(self.alias_edit, r, 1)
        g.addWidget(QLabel("Profile Name"), r, 2); g.addWidget(self.profile_name_edit, r, 3); r += 1
        g.addWidget(QLabel("Role ARN"), r, 0); g.addWidget(self.role_arn_edit, r, 1, 1, 3); r += 1
        g.addWidget(QLabel("IdP ARN"), r, 0); g.addWidget(self.idp_arn_edit, r, 1, 1, 3); r += 1
        g.addWidget(QLabel("Sign-in URL"), r, 0); g.addWidget(self.url_edit, r, 1, 1, 3); r += 1
        g.addWidget(QLabel("Minutes before expiry"), r, 0); g.addWidget(self.lead_spin, r, 1)
        g.addWidget(self.auto_chk, r, 2); g.addWidget(self.silent_chk, r, 3); r += 1
        g.addWidget(QLabel("Status"), r, 0); g.addWidget(self.status_lbl, r, 1, 1, 3); r += 1

        btn_row = QHBoxLayout()
        for b in (self.add_btn, self.delete_btn, self.activate_btn, self.deactivate_btn,
                  self.console_btn, self.save_settings_btn):
            btn_row.addWidget(b)
        btn_row.addStretch(1)
        btn_row.addWidget(self.clear_btn)

        top_box = QWidget(); top_layout = QVBoxLayout(top_box)
        top_layout.addLayout(g); top_layout.addLayout(btn_row); top_layout.addWidget(self.profile_list)

        self.splitter = QSplitter(Qt.Orientation.Vertical)
        self.splitter.addWidget(top_box)
        self.splitter.addWidget(self.log_txt)
        self.splitter.setStretchFactor(0, 0)
        self.splitter.setStretchFactor(1, 1)

        w = QWidget(); outer = QVBoxLayout(w); outer.addWidget(self.splitter)
        self.setCentralWidget(w)

        # Signals
        self.add_btn.clicked.connect(self.on_add)
        self.delete_btn.clicked.connect(self.on_delete)
        self.activate_btn.clicked.connect(lambda: self.run_in_worker(self.manager.activate_profile))
        self.deactivate_btn.clicked.connect(lambda: self.run_in_worker(self.manager.deactivate_profile))
        self.console_btn.clicked.connect(lambda: self.run_in_worker(self.manager.open_console))
        self.save_settings_btn.clicked.connect(self.on_save_settings)
        self.clear_btn.clicked.connect(lambda: self.log_txt.clear())
        self.profile_list.currentItemChanged.connect(self.on_select)
        manager.events.renewed.connect(self.on_renewed)
        manager.events.renewal_failed.connect(self.on_renewal_failed)

        self.worker_thread: Optional[QThread] = None
        self.worker_obj: Optional[Worker] = None

        self.settings = QSettings(QSettings.Format.IniFormat, QSettings.Scope.UserScope, APP_NAME, "window")
        self.restore_ui_state()
        self.refresh_profiles()

    def restore_ui_state(self):
        geo = self.settings.value("geometry")
        if isinstance(geo, QByteArray):
            self.restoreGeometry(geo)
        else:
            self.resize(1000, 700)
        spl = self.settings.value("splitter")
        if isinstance(spl, QByteArray):
            self.splitter.restoreState(spl)

    def save_ui_state(self):
        self.settings.setValue("geometry", self.saveGeometry())
        self.settings.setValue("splitter", self.splitter.saveState())

    def log(self, s: str):
        self.log_txt.append(s)
        self.log_txt.moveCursor(self.log_txt.textCursor().MoveOperation.End)

    def selected_alias(self) -> Optional[str]:
        item = self.profile_list.currentItem()
        return item.data(Qt.ItemDataRole.UserRole) if item else None

    def refresh_profiles(self):
        self.manager.validate_sessions()
        current = self.selected_alias()
        self.profile_list.clear()
        for p in self.manager.profiles.list():
            state = f"active, expires {p.expires_at.astimezone():%Y-%m-%d %H:%M}" if p.active and p.expires_at else \
                    ("active" if p.active else "inactive")
            item = QListWidgetItem(f"{p.alias}  [{p.profile_name}]  {state}")
            item.setData(Qt.ItemDataRole.UserRole, p.alias)
            self.profile_list.addItem(item)
            if p.alias == current:
                self.profile_list.setCurrentItem(item)

    def on_select(self, item, _prev=None):
        if not item:
            return
        p = self.manager.profiles.get(item.data(Qt.ItemDataRole.UserRole))
        if p:
            self.alias_edit.setText(p.alias)
            self.profile_name_edit.setText(p.profile_name)
            self.role_arn_edit.setText(p.role_arn)
            self.idp_arn_edit.setText(p.idp_arn)
            self.url_edit.setText(p.login_url)

    def on_add(self):
        fields = {name: e.text().strip() for name, e in (
            ("alias", self.alias_edit), ("profile_name", self.profile_name_edit),
            ("role_arn", self.role_arn_edit), ("login_url", self.url_edit), ("idp_arn", self.idp_arn_edit))}
        if not all(fields.values()):
            QMessageBox.warning(self, APP_TITLE, "All profile fields are required.")
            return
        profile = Profile(**fields)
        if self.manager.profiles.get(profile.alias):
            res = self.manager.update_profile(profile)
        else:
            res = self.manager.add_profile(profile)
        self.show_result(res)
        self.refresh_profiles()

    def on_delete(self):
        alias = self.selected_alias()
        if alias:
            self.show_result(self.manager.delete_profile(alias))
            self.refresh_profiles()

    def on_save_settings(self):
        self.show_result(self.manager.set_auto_refresh_settings(RenewalSettings(
            enabled=self.auto_chk.isChecked(),
            lead_minutes=int(self.lead_spin.value()),
            silent=self.silent_chk.isChecked(),
        )))

    def run_in_worker(self, action: Callable[[str], ActionResult]):
        alias = self.selected_alias()
        if not alias or self.worker_thread:
            return
        self.status_lbl.setText(f"Working on {alias}…")
        self.worker_thread = QThread(self)
        self.worker_obj = Worker(lambda: action(alias))
        self.worker_obj.moveToThread(self.worker_thread)
        self.worker_thread.started.connect(self.worker_obj.run)
        self.worker_obj.done.connect(self.on_result)
        self.worker_obj.finished.connect(self.worker_thread.quit)
        self.worker_thread.finished.connect(self.cleanup_thread)
        self.worker_thread.start()

    def on_result(self, res: ActionResult):
        self.show_result(res)
        if res.success and res.url:
            QDesktopServices.openUrl(QUrl(res.url))
        self.refresh_profiles()

    def show_result(self, res: ActionResult):
        self.status_lbl.setText(res.message)
        if not res.success:
            QMessageBox.warning(self, APP_TITLE, res.message)

    def cleanup_thread(self):
        self.worker_thread = None
        self.worker_obj = None

    def on_renewed(self, alias: str):
        self.refresh_profiles()
        if not self.manager.get_auto_refresh_settings().silent:
            self.status_lbl.setText(f"Session renewed automatically: {alias}")

    def on_renewal_failed(self, alias: str):
        self.refresh_profiles()
        QMessageBox.warning(self, APP_TITLE, f"Automatic renewal failed for {alias}. Please refresh it manually.")

    def closeEvent(self, event):
        self.save_ui_state()
        self.manager.shutdown()
        super().closeEvent(event)


def main():
    configure_logging()
    app = QApplication(sys.argv)
    app.setOrganizationName(APP_NAME)
    app.setApplicationName(APP_NAME)

    manager = build_manager()
    win = MainWindow(manager)
    handler = QtLogHandler()
    handler.bridge.line.connect(win.log)
    logging.getLogger("sessionkeeper").addHandler(handler)

    notice = manager.check_foreign_credentials()
    if notice.message:
        QMessageBox.information(win, APP_TITLE, notice.message)

    # imminent expiries renew on a background thread
    manager.restore_timers()

    win.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
