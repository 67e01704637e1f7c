"""
BaseChat - Main Application Entry Point

Initializes CustomTkinter and launches the main window. Model loading and
generation run in a separate worker process started by the window.
"""

import multiprocessing

import customtkinter as ctk

from basechat.logging_config import close_debug_log, info


def main():
    """
    Main entry point for the BaseChat desktop application.
    """
    # Required for the worker process in frozen Windows executables
    multiprocessing.freeze_support()

    ctk.set_appearance_mode("System")
    ctk.set_default_color_theme("blue")

    # Imported here so the worker process (spawn) does not build a window module
    from basechat.ui.main_window import MainWindow

    info("BaseChat starting")
    app = MainWindow()
    try:
        app.mainloop()
    finally:
        close_debug_log()


if __name__ == "__main__":
    main()
