from PySide6.QtWidgets import QMainWindow, QWidget, QHBoxLayout

from gui.views.dashboard import DashboardController


class MainWindow(QMainWindow):
    def __init__(self, dashboard: DashboardController):
        super().__init__()
        self.setWindowTitle("Traffic Line Console")
        self._dashboard = dashboard

        container = QWidget()
        layout = QHBoxLayout(container)
        layout.addWidget(dashboard, 1)
        self.setCentralWidget(container)
        container.setObjectName("rootContainer")

    @property
    def dashboard(self) -> DashboardController:
        return self._dashboard

    def closeEvent(self, e):
        self._dashboard.teardown()
        super().closeEvent(e)
