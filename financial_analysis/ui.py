"""Tkinter desktop shell rendering :class:`FinancialAnalysisApp` state."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Optional

import tkinter as tk
from tkinter import messagebox, ttk

from matplotlib.backends.backend_tkagg import FigureCanvasTkAgg
from matplotlib.figure import Figure

from financial_analysis.app import FinancialAnalysisApp
from financial_analysis.chart import bars_to_frame, draw_candles
from financial_analysis.core.config import APP_NAME, AVAILABLE_API_HOSTS, RUN_MODES, ClientConfig
from financial_analysis.core.executor import TaskExecutor, select_executor
from financial_analysis.core.stock_view import StockView
from financial_analysis.providers.base import Granularity, RemoteConfigurationError

LOGGER = logging.getLogger(__name__)

LOG_POLL_MS = 250


class UILogHandler(logging.Handler):
    """Forward log messages to the Tkinter UI in a thread-safe manner."""

    def __init__(self, message_queue: "queue.Queue[str]") -> None:
        super().__init__()
        self.queue = message_queue
        self.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - GUI glue
        try:
            msg = self.format(record)
        except Exception:  # pylint: disable=broad-except
            self.handleError(record)
        else:
            self.queue.put(msg)


class StockWindow(tk.Toplevel):  # pragma: no cover - UI side effects dominate
    """One window per open :class:`StockView`."""

    def __init__(self, master: tk.Misc, view: StockView) -> None:
        super().__init__(master)
        self.view = view
        self.title(view.title)
        self.geometry("900x620")
        self.protocol("WM_DELETE_WINDOW", self._on_close)
        self._rendered: Optional[tuple] = None

        controls = ttk.Frame(self, padding=6)
        controls.pack(fill=tk.X)

        ttk.Label(controls, text="Period:").pack(side=tk.LEFT)
        self.granularity_var = tk.StringVar(value=view.granularity.label)
        labels = [g.label for g in Granularity]
        granularity_box = ttk.Combobox(
            controls, textvariable=self.granularity_var, values=labels, state="readonly", width=10
        )
        granularity_box.pack(side=tk.LEFT, padx=(4, 12))
        granularity_box.bind("<<ComboboxSelected>>", self._on_granularity)

        ttk.Label(controls, text="Predict bars:").pack(side=tk.LEFT)
        self.length_var = tk.IntVar(value=0)
        self.length_spin = ttk.Spinbox(
            controls, from_=0, to=0, textvariable=self.length_var, width=6, command=self._on_length
        )
        self.length_spin.pack(side=tk.LEFT, padx=4)
        self.predict_button = ttk.Button(controls, text="Predict", command=self._on_predict)
        self.predict_button.pack(side=tk.LEFT, padx=4)
        self.retry_button = ttk.Button(controls, text="Retry", command=self.view.retry)
        self.retry_button.pack(side=tk.LEFT, padx=4)

        self.status_var = tk.StringVar()
        ttk.Label(controls, textvariable=self.status_var).pack(side=tk.RIGHT)

        body = ttk.PanedWindow(self, orient=tk.HORIZONTAL)
        body.pack(fill=tk.BOTH, expand=True)

        chart_frame = ttk.Frame(body)
        self.figure = Figure(figsize=(7, 4.5), dpi=100)
        self.ax = self.figure.add_subplot(111)
        self.canvas = FigureCanvasTkAgg(self.figure, master=chart_frame)
        self.canvas.get_tk_widget().pack(fill=tk.BOTH, expand=True)
        body.add(chart_frame, weight=3)

        issue_frame = ttk.Frame(body, padding=4)
        self.issue_tree = ttk.Treeview(issue_frame, columns=("field", "value"), show="headings")
        self.issue_tree.heading("field", text="Field")
        self.issue_tree.heading("value", text="Value")
        self.issue_tree.column("field", width=110)
        self.issue_tree.pack(fill=tk.BOTH, expand=True)
        body.add(issue_frame, weight=1)

    def _on_granularity(self, _event: object = None) -> None:
        label = self.granularity_var.get()
        for granularity in Granularity:
            if granularity.label == label:
                self.view.set_granularity(granularity)
                self.length_var.set(0)
                return

    def _on_length(self) -> None:
        try:
            requested = int(self.length_var.get())
        except (tk.TclError, ValueError):
            requested = 0
        self.length_var.set(self.view.set_prediction_length(requested))

    def _on_predict(self) -> None:
        self._on_length()
        self.view.request_prediction()

    def _on_close(self) -> None:
        self.view.close()
        self.destroy()

    def refresh(self, enabled: bool) -> None:
        view = self.view
        self.length_spin.configure(to=view.max_prediction_length)
        predict_ok = enabled and view.can_predict(max(1, view.predict_len))
        self.predict_button.state(["!disabled"] if predict_ok else ["disabled"])
        self.retry_button.state(["!disabled"] if view.error else ["disabled"])

        if view.requesting:
            status = "Loading..."
        elif view.error:
            status = f"Error: {view.error}"
        elif view.predicting:
            status = "Predicting..."
        elif view.predict_error:
            status = view.predict_error
        else:
            status = f"{len(view.bars)} bars"
        self.status_var.set(status)

        key = (view.granularity, view.bars, view.predicted, view.issue, view.issue_error)
        if key == self._rendered:
            return
        self._rendered = key
        frame = bars_to_frame(view.bars, view.predicted)
        draw_candles(self.ax, frame, title=f"{view.title} ({view.granularity.label})")
        self.canvas.draw_idle()

        self.issue_tree.delete(*self.issue_tree.get_children())
        if view.issue is not None:
            for title, value in view.issue.display_rows():
                self.issue_tree.insert("", tk.END, values=(title, value))
        elif view.issue_error:
            self.issue_tree.insert("", tk.END, values=("Error", view.issue_error))


class FinancialAnalysisWindow(tk.Tk):  # pragma: no cover - UI side effects dominate
    """Main window: connection, login, stock search and the debug panel."""

    def __init__(self, config: ClientConfig, executor: Optional[TaskExecutor] = None) -> None:
        super().__init__()
        self.title(APP_NAME)
        self.geometry("760x640")

        self._woken = threading.Event()
        self.app = FinancialAnalysisApp(config, executor or select_executor(), wake=self._woken.set)
        self.stock_windows: dict[str, StockWindow] = {}
        self._listed: tuple = ()

        self.log_queue: "queue.Queue[str]" = queue.Queue()
        self.log_handler = UILogHandler(self.log_queue)
        logging.getLogger().addHandler(self.log_handler)

        self._build_layout()
        self.protocol("WM_DELETE_WINDOW", self._on_close)

        self.app.start()
        self._frame_job = self.after(1, self._on_frame)
        self._log_job = self.after(LOG_POLL_MS, self._poll_log_queue)

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------
    def _build_layout(self) -> None:
        top = ttk.Frame(self, padding=6)
        top.pack(fill=tk.X)

        ttk.Label(top, text="API host:").pack(side=tk.LEFT)
        self.host_var = tk.StringVar(value=self.app.config.api_host)
        host_box = ttk.Combobox(
            top, textvariable=self.host_var, values=list(AVAILABLE_API_HOSTS), state="readonly", width=16
        )
        host_box.pack(side=tk.LEFT, padx=4)
        host_box.bind("<<ComboboxSelected>>", self._on_host)
        ttk.Button(top, text="Reconnect", command=self.app.reconnect).pack(side=tk.LEFT, padx=4)
        self.connection_var = tk.StringVar()
        ttk.Label(top, textvariable=self.connection_var).pack(side=tk.LEFT, padx=8)

        self.debug_var = tk.BooleanVar(value=False)
        ttk.Checkbutton(top, text="Debug", variable=self.debug_var, command=self._on_debug).pack(
            side=tk.RIGHT
        )

        login = ttk.LabelFrame(self, text="Login", padding=6)
        login.pack(fill=tk.X, padx=6)
        ttk.Label(login, text="User:").grid(row=0, column=0, sticky=tk.W)
        self.username_var = tk.StringVar()
        ttk.Entry(login, textvariable=self.username_var, width=18).grid(row=0, column=1, padx=4)
        ttk.Label(login, text="Password:").grid(row=0, column=2, sticky=tk.W)
        self.password_var = tk.StringVar()
        ttk.Entry(login, textvariable=self.password_var, show="*", width=18).grid(row=0, column=3, padx=4)
        self.login_button = ttk.Button(login, text="Login", command=self._on_login)
        self.login_button.grid(row=0, column=4, padx=4)
        self.register_button = ttk.Button(login, text="Register", command=self._on_register)
        self.register_button.grid(row=0, column=5, padx=4)
        self.login_status_var = tk.StringVar()
        ttk.Label(login, textvariable=self.login_status_var).grid(row=1, column=0, columnspan=6, sticky=tk.W)

        stocks = ttk.LabelFrame(self, text="Stocks", padding=6)
        stocks.pack(fill=tk.BOTH, expand=True, padx=6, pady=4)
        search_row = ttk.Frame(stocks)
        search_row.pack(fill=tk.X)
        ttk.Label(search_row, text="Search:").pack(side=tk.LEFT)
        self.search_var = tk.StringVar()
        self.search_var.trace_add("write", lambda *_: self.app.set_search_text(self.search_var.get()))
        ttk.Entry(search_row, textvariable=self.search_var).pack(side=tk.LEFT, fill=tk.X, expand=True, padx=4)
        ttk.Button(search_row, text="Refresh", command=self.app.refresh_stock_list).pack(side=tk.LEFT)
        self.search_status_var = tk.StringVar()
        ttk.Label(stocks, textvariable=self.search_status_var).pack(anchor=tk.W)

        self.stock_tree = ttk.Treeview(stocks, columns=("code", "symbol", "name"), show="headings", height=12)
        for column, width in (("code", 90), ("symbol", 110), ("name", 260)):
            self.stock_tree.heading(column, text=column.title())
            self.stock_tree.column(column, width=width)
        self.stock_tree.pack(fill=tk.BOTH, expand=True)
        self.stock_tree.bind("<Double-1>", self._on_open_stock)

        self.debug_frame = ttk.LabelFrame(self, text="Debug", padding=6)
        self.run_mode_var = tk.StringVar(value=self.app.run_mode)
        for mode in RUN_MODES:
            ttk.Radiobutton(
                self.debug_frame,
                text=mode.title(),
                value=mode,
                variable=self.run_mode_var,
                command=lambda: self.app.set_run_mode(self.run_mode_var.get()),
            ).pack(side=tk.LEFT)
        self.fps_var = tk.StringVar()
        ttk.Label(self.debug_frame, textvariable=self.fps_var).pack(side=tk.LEFT, padx=12)

        log_frame = ttk.LabelFrame(self, text="Log", padding=6)
        log_frame.pack(fill=tk.X, padx=6, pady=4)
        self.log_text = tk.Text(log_frame, height=6, state=tk.DISABLED)
        self.log_text.pack(fill=tk.X)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------
    def _on_host(self, _event: object = None) -> None:
        try:
            self.app.select_host(self.host_var.get())
        except RemoteConfigurationError as exc:
            messagebox.showerror("Invalid host", str(exc))
            self.host_var.set(self.app.config.api_host)

    def _on_login(self) -> None:
        self.app.login(self.username_var.get(), self.password_var.get())
        self.password_var.set("")

    def _on_register(self) -> None:
        self.app.register(self.username_var.get(), self.password_var.get())
        self.password_var.set("")

    def _on_debug(self) -> None:
        self.app.enable_debug_panel = self.debug_var.get()
        if self.app.enable_debug_panel:
            self.debug_frame.pack(fill=tk.X, padx=6)
        else:
            self.debug_frame.pack_forget()

    def _on_open_stock(self, _event: object = None) -> None:
        if not self.app.enabled:
            return
        selection = self.stock_tree.selection()
        if not selection:
            return
        index = self.stock_tree.index(selection[0])
        if index >= len(self._listed):
            return
        view = self.app.open_view(self._listed[index])
        window = self.stock_windows.get(view.symbol)
        if window is None or not window.winfo_exists():
            self.stock_windows[view.symbol] = StockWindow(self, view)
        else:
            window.lift()

    # ------------------------------------------------------------------
    # Frame loop
    # ------------------------------------------------------------------
    def _on_frame(self) -> None:
        try:
            self.app.on_frame()
            self._render()
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception("Frame failed")
        delay = 0.0 if self._woken.is_set() else self.app.next_frame_delay()
        self._woken.clear()
        self._frame_job = self.after(max(1, int(delay * 1000)), self._on_frame)

    def _render(self) -> None:
        app = self.app
        if app.connected:
            self.connection_var.set(f"Connected to {app.config.base_url}")
        elif app.connect_error:
            self.connection_var.set(f"Connection failed: {app.connect_error}")
        else:
            self.connection_var.set("Connecting...")

        if app.login_error:
            self.login_status_var.set(app.login_error)
        elif app.register_status:
            self.login_status_var.set(app.register_status)
        elif app.enabled:
            self.login_status_var.set("Logged in")
        else:
            self.login_status_var.set("")
        for button in (self.login_button, self.register_button):
            button.state(["!disabled"] if app.connected else ["disabled"])

        if app.stock_list_error:
            self.search_status_var.set(f"Stock list failed: {app.stock_list_error}")
        elif app.stock_list_requesting:
            self.search_status_var.set("Loading stock list...")
        else:
            self.search_status_var.set(app.search_status)

        visible = app.visible_stocks
        if visible != self._listed:
            self._listed = visible
            self.stock_tree.delete(*self.stock_tree.get_children())
            for stock in visible:
                self.stock_tree.insert("", tk.END, values=(stock.code, stock.symbol, stock.name))

        for symbol, window in list(self.stock_windows.items()):
            if not window.view.is_open or not window.winfo_exists():
                if window.winfo_exists():
                    window.destroy()
                del self.stock_windows[symbol]
                continue
            window.refresh(app.enabled)

        if app.enable_debug_panel:
            history = app.frame_history
            self.fps_var.set(
                f"{history.fps():.1f} fps, mean frame {history.mean_frame_time() * 1000:.1f} ms, "
                f"pending tasks {app.executor.pending}"
            )

    def _poll_log_queue(self) -> None:
        lines = []
        while True:
            try:
                lines.append(self.log_queue.get_nowait())
            except queue.Empty:
                break
        if lines:
            self.log_text.configure(state=tk.NORMAL)
            self.log_text.insert(tk.END, "\n".join(lines) + "\n")
            self.log_text.see(tk.END)
            self.log_text.configure(state=tk.DISABLED)
        self._log_job = self.after(LOG_POLL_MS, self._poll_log_queue)

    def _on_close(self) -> None:
        for job in (self._frame_job, self._log_job):
            try:
                self.after_cancel(job)
            except tk.TclError:
                pass
        logging.getLogger().removeHandler(self.log_handler)
        self.app.shutdown()
        self.destroy()

    def run(self) -> None:
        self.mainloop()


def run_app(config: ClientConfig, executor: Optional[TaskExecutor] = None) -> None:  # pragma: no cover - UI entry
    """Create and run the desktop window until it is closed."""

    window = FinancialAnalysisWindow(config, executor)
    window.run()


__all__ = ["FinancialAnalysisWindow", "StockWindow", "UILogHandler", "run_app"]
