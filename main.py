import sys
import logging
from functools import partial
from PySide6.QtCore import Qt
from PySide6.QtGui import QAction
from PySide6.QtWidgets import (QApplication, QLabel, QMainWindow, QFileDialog, QWidget, QVBoxLayout,
                               QPushButton, QMessageBox, QSplitter, QTextEdit, QTabWidget, QInputDialog)
from wsi_algos.annotations import AnnotationObject, ObjectKind
from wsi_algos.backend import SlideLoadError, SlideReadError
from wsi_algos.client import AlgorithmClient, ConnectionManager, NotificationLevel, RunOutcome, RunState
from wsi_algos.config import CONFIG
from wsi_algos.errors import ServerKitError
from wsi_algos.gui import AlgorithmRunTask, ParametersDialog, RunExecutor
from wsi_algos.viewer import SlideViewer

log = logging.getLogger(__name__)


class MainWindow(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("WSI Viewer with Algorithm Server")

        # 메인 레이아웃: 스플리터로 뷰어와 대시보드 분할
        self.splitter = QSplitter(Qt.Horizontal)
        self.viewer = SlideViewer()
        self.viewer.selection_changed.connect(self.on_selection_changed)
        self.splitter.addWidget(self.viewer)

        self.dashboard = None
        self.dashboard_visible = True

        self.setCentralWidget(self.splitter)

        # 서버 연결 / 실행
        self.connections = ConnectionManager(CONFIG.server)
        self.client: AlgorithmClient | None = None
        self.executor = RunExecutor(config=CONFIG)
        self.dialogs = {}

        self._build_menu()
        self._build_dashboard()

    def _build_menu(self):
        # File 메뉴
        act_open = QAction("Open...", self)
        act_open.setShortcut("Ctrl+O")
        act_open.triggered.connect(self.open_file)
        menu_file = self.menuBar().addMenu("File")
        menu_file.addAction(act_open)

        # Algorithms 메뉴 (연결 후 알고리즘 목록이 추가됨)
        self.menu_algos = self.menuBar().addMenu("Algorithms")
        self._rebuild_algorithms_menu([])

        # View 메뉴
        act_toggle_dashboard = QAction("Toggle Dashboard", self)
        act_toggle_dashboard.setShortcut("F9")
        act_toggle_dashboard.triggered.connect(self.toggle_dashboard)
        menu_view = self.menuBar().addMenu("View")
        menu_view.addAction(act_toggle_dashboard)

    def _rebuild_algorithms_menu(self, algorithms):
        self.menu_algos.clear()
        act_connect = QAction("Connect...", self)
        act_connect.setShortcut("Ctrl+K")
        act_connect.triggered.connect(self.connect_to_server)
        self.menu_algos.addAction(act_connect)
        if algorithms:
            self.menu_algos.addSeparator()
        for name in algorithms:
            act = QAction(name, self)
            act.triggered.connect(partial(self.open_algorithm, name))
            self.menu_algos.addAction(act)

    def _build_dashboard(self):
        """대시보드 패널 구성"""
        self.dashboard = QWidget()
        self.dashboard.setMinimumWidth(350)
        self.dashboard.setMaximumWidth(500)

        self.tab_widget = QTabWidget()
        self._build_slide_info_tab()
        self._build_server_tab()
        self._build_results_tab()

        main_layout = QVBoxLayout(self.dashboard)
        main_layout.addWidget(self.tab_widget)

        self.splitter.addWidget(self.dashboard)
        self.splitter.setStretchFactor(0, 3)  # 뷰어가 3/4
        self.splitter.setStretchFactor(1, 1)  # 대시보드가 1/4

    def _build_slide_info_tab(self):
        tab = QWidget()
        layout = QVBoxLayout(tab)

        self.info = QLabel("No slide loaded")
        self.info.setWordWrap(True)
        layout.addWidget(self.info)

        layout.addWidget(QLabel("Shift+drag: draw region, Ctrl+click: select region"))
        self.selection_label = QLabel("No region selected")
        self.selection_label.setWordWrap(True)
        layout.addWidget(self.selection_label)

        self.status_label = QLabel("Ready")
        self.status_label.setWordWrap(True)
        layout.addWidget(self.status_label)

        layout.addStretch()
        self.tab_widget.addTab(tab, "Slide Info")

    def _build_server_tab(self):
        tab = QWidget()
        layout = QVBoxLayout(tab)

        layout.addWidget(QLabel("Server Connection:"))
        self.server_status_label = QLabel("Not connected")
        self.server_status_label.setWordWrap(True)
        layout.addWidget(self.server_status_label)

        self.btn_connect = QPushButton("Connect...")
        self.btn_connect.clicked.connect(self.connect_to_server)
        layout.addWidget(self.btn_connect)

        self.btn_check_server = QPushButton("Check Server Connection")
        self.btn_check_server.clicked.connect(self.check_server_connection)
        layout.addWidget(self.btn_check_server)

        layout.addStretch()
        self.tab_widget.addTab(tab, "Server")

    def _build_results_tab(self):
        tab = QWidget()
        layout = QVBoxLayout(tab)

        self.results_stats = QLabel("No results yet")
        self.results_stats.setWordWrap(True)
        layout.addWidget(self.results_stats)

        layout.addWidget(QLabel("Processing Log:"))
        self.results_log = QTextEdit()
        self.results_log.setReadOnly(True)
        layout.addWidget(self.results_log)

        self.btn_clear_results = QPushButton("Clear Results")
        self.btn_clear_results.clicked.connect(self.clear_results)
        layout.addWidget(self.btn_clear_results)

        layout.addStretch()
        self.tab_widget.addTab(tab, "Results")

    # -------------------- 슬라이드 --------------------
    def open_file(self):
        path, _ = QFileDialog.getOpenFileName(self, "Open slide", "", "Slides (*.svs *.ndpi *.scn *.mrxs *.tiff *.tif)")
        if not path:
            return

        try:
            self.viewer.load_slide(path)
        except SlideLoadError as e:
            log.error(f"Slide loading failed: {e}")
            QMessageBox.critical(self, "Error", f"Slide loading failed:\n{e}")
            return
        b = self.viewer.backend
        self.info.setText(
            f"Levels: {b.levels}\nDims: {b.dimensions}\n"
            f"MPP: {b.mpp_x:.3f} x {b.mpp_y:.3f}\nObjective: {b.objective_power}"
        )

    def toggle_dashboard(self):
        self.dashboard_visible = not self.dashboard_visible
        self.dashboard.setVisible(self.dashboard_visible)

    def on_selection_changed(self, obj):
        if obj is None:
            self.selection_label.setText("No region selected")
            return
        x0, y0, x1, y1 = obj.geometry.bounds
        self.selection_label.setText(f"Selected region: ({x0:.0f}, {y0:.0f}) - ({x1:.0f}, {y1:.0f})")

    # -------------------- 서버 연결 --------------------
    def connect_to_server(self):
        default = self.connections.url or CONFIG.server.default_url
        address, ok = QInputDialog.getText(self, "Connect", "Server address:", text=default)
        if not ok:
            return

        try:
            connection = self.connections.connect(address)
            client = AlgorithmClient(connection, CONFIG)
            algorithms = client.list_algorithms()
        except ServerKitError as e:
            self.server_status_label.setText(f"✗ Connection failed: {e}")
            QMessageBox.critical(self, "Connection Error", f"Could not connect to {address}:\n{e}")
            return

        self.client = client
        self.dialogs.clear()
        self._rebuild_algorithms_menu(algorithms)
        self.server_status_label.setText(
            f"✓ Connected to {connection.url}\nDialect: {connection.dialect.value}\n"
            f"Algorithms: {len(algorithms)}"
        )
        self.results_log.append(f"Connected to {connection.url} ({len(algorithms)} algorithms)")

    def check_server_connection(self):
        if self.connections.current is None:
            self.server_status_label.setText("Not connected")
        elif self.connections.is_connected():
            self.server_status_label.setText(f"✓ Connected to {self.connections.url}")
        else:
            self.server_status_label.setText(f"✗ Cannot reach {self.connections.url}\nPlease check if the server is running.")

    # -------------------- 알고리즘 실행 --------------------
    def open_algorithm(self, algorithm: str, checked: bool = False):
        if self.client is None:
            return
        dialog = self.dialogs.get(algorithm)
        if dialog is None:
            try:
                parameters = self.client.get_parameters(algorithm)
            except ServerKitError as e:
                QMessageBox.critical(self, "Parameters", f"Could not get the parameters of {algorithm}:\n{e}")
                return
            dialog = ParametersDialog(algorithm, parameters, self.client, self)
            dialog.run_requested.connect(partial(self.run_algorithm, algorithm, dialog))
            self.dialogs[algorithm] = dialog
        dialog.show()
        dialog.raise_()

    def run_algorithm(self, algorithm: str, dialog: ParametersDialog, parameters):
        parent = self.viewer.hierarchy.selected_object
        if not self.viewer.backend or parent is None or parent.kind != ObjectKind.ANNOTATION:
            QMessageBox.warning(self, "Run", "Please select a region annotation first (Shift+drag).")
            return

        try:
            region = self.viewer.region_request_for(parent)
            image = self.viewer.read_region_image(region)
        except (SlideReadError, ValueError) as e:
            QMessageBox.critical(self, "Run", f"Could not read the selected region:\n{e}")
            return

        # 결과 부모 annotation은 삭제되지 않도록 잠금
        parent.locked = True
        dialog.set_running(True)
        self.status_label.setText(f"Running {algorithm}...")
        self.results_log.append(f"Running {algorithm} on {region.width}x{region.height} region (ds={region.downsample:.2f})")

        task = AlgorithmRunTask(self.client, algorithm, parameters, image, region)
        self.executor.submit(
            task,
            on_completed=partial(self.on_run_completed, parent, dialog),
            on_failed=partial(self.on_run_failed, dialog),
            on_state=self.on_run_state,
            on_cancelled=partial(self.on_run_cancelled, dialog),
        )

    def on_run_state(self, state: str):
        self.status_label.setText(f"State: {state}")

    def on_run_completed(self, parent: AnnotationObject, dialog: ParametersDialog, outcome: RunOutcome):
        dialog.set_running(False)
        hierarchy = self.viewer.hierarchy
        result = outcome.result

        added = []
        for decoded in result.records:
            if decoded.objects:
                hierarchy.add_objects_below_parent(parent, decoded.objects, fire=False)
                added.extend(decoded.objects)
        hierarchy.clear_selection()
        for obj in added:
            hierarchy.set_selected_object(obj, add=True)
        hierarchy.fire_hierarchy_changed()
        new_classes = hierarchy.update_classifications(added)
        outcome.state = RunState.DISPLAYED

        for note in result.notifications:
            self._show_notification(note)
        for error in result.errors:
            self.results_log.append(f"ERROR: {error}")

        summary = f"{outcome.algorithm}: {len(added)} objects"
        if new_classes:
            summary += f", classes: {', '.join(new_classes)}"
        self.results_stats.setText(summary)
        self.results_log.append(summary)
        self.status_label.setText(f"Displayed {len(added)} objects from {outcome.algorithm}")

    def on_run_failed(self, dialog: ParametersDialog, error_message: str):
        dialog.set_running(False)
        self.status_label.setText("Run failed")
        self.results_log.append(f"ERROR: {error_message}")
        QMessageBox.critical(self, "Processing Error", error_message)

    def on_run_cancelled(self, dialog: ParametersDialog):
        dialog.set_running(False)
        self.status_label.setText("Run cancelled")

    def _show_notification(self, note):
        self.results_log.append(f"[{note.level.value}] {note.title}: {note.message}")
        if note.level == NotificationLevel.ERROR:
            QMessageBox.critical(self, note.title, note.message)
        elif note.level == NotificationLevel.WARNING:
            QMessageBox.warning(self, note.title, note.message)
        else:
            self.statusBar().showMessage(note.message, 5000)

    def clear_results(self):
        """선택한 annotation 외 결과 제거"""
        hierarchy = self.viewer.hierarchy
        for obj in hierarchy.get_objects(ObjectKind.DETECTION):
            hierarchy.remove_object(obj, fire=False)
        hierarchy.fire_hierarchy_changed()
        self.results_stats.setText("No results")
        self.results_log.clear()

    def closeEvent(self, event):
        self.executor.cancel_all()
        super().closeEvent(event)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    app = QApplication(sys.argv)
    win = MainWindow(); win.resize(1800, 1100); win.show()
    sys.exit(app.exec())
