import argparse
import logging
import sys
from pathlib import Path

from PySide6.QtWidgets import QApplication

from funnel.settings import ConsoleSettings, load_settings
from gui.app_shell import MainWindow
from gui.views.dashboard import DashboardController

BASE_DIR = Path(__file__).resolve().parent


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Operator console for the mock traffic funnel.")
    ap.add_argument("--config", default=None, help="Console settings YAML.")
    ap.add_argument("--base-url", default=None, help="Backend root URL (overrides the file).")
    ap.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    return ap.parse_args(argv)


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [CONSOLE] %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_app(settings: ConsoleSettings) -> tuple[QApplication, MainWindow]:
    app = QApplication.instance() or QApplication(sys.argv)
    dashboard = DashboardController(settings)
    win = MainWindow(dashboard)
    win.resize(1280, 900)
    win.show()
    dashboard.start()
    return app, win


def load_stylesheets(paths: list[str] | tuple[str, ...]) -> str:
    parts = []
    for p in paths:
        fp = Path(p)
        if not fp.is_absolute():
            fp = BASE_DIR / fp
        try:
            parts.append(fp.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logging.getLogger(__name__).warning("[QSS] Not found: %s", fp)
    return "\n\n/* ---- next file ---- */\n\n".join(parts)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = load_settings(args.config).with_overrides(
        base_url=args.base_url, log_level=args.log_level
    )
    configure_logging(settings.log_level)

    app, _win = build_app(settings)
    qss = load_stylesheets(settings.stylesheets)
    if qss:
        app.setStyleSheet(qss)
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
