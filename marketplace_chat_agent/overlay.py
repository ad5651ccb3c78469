# --------------------- Status-Overlay (Tk) -----------------------------------
# GUI in eigenem Thread; Befehle gehen über msg_queue an die REPL.
import queue
import threading
import tkinter as tk
from tkinter import ttk
from typing import Optional

from .progress import detail_lines


class Overlay:
    def __init__(self, auto_mode: bool = False):
        self.msg_queue: "queue.Queue[str]" = queue.Queue()
        self._auto_initial = auto_mode
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._gui_thread_main, daemon=True)
        self._thread.start()
        self._ready.wait(timeout=5)

    def _gui_thread_main(self):
        self._root = tk.Tk()
        self._root.title("Marketplace Bot")
        self._root.attributes("-topmost", True)
        self._root.geometry("520x460+60+60")

        frm = ttk.Frame(self._root, padding=10)
        frm.pack(fill=tk.BOTH, expand=True)

        row = ttk.Frame(frm); row.pack(fill=tk.X)
        self._lbl_step = ttk.Label(row, text="Bereit", font=("TkDefaultFont", 11, "bold"))
        self._lbl_step.pack(side=tk.LEFT)
        self._lbl_countdown = ttk.Label(row, text="", foreground="#a60")
        self._lbl_countdown.pack(side=tk.LEFT, padx=8)
        ttk.Button(row, text="Stopp", command=lambda: self.msg_queue.put("stopp")).pack(side=tk.RIGHT)

        self._detail = tk.Text(frm, height=9, wrap=tk.WORD, state=tk.DISABLED)
        self._detail.pack(fill=tk.BOTH, expand=True, pady=(6, 6))

        # Auto-Modus Toggle
        self._auto_var = tk.BooleanVar(value=self._auto_initial)
        row2 = ttk.Frame(frm); row2.pack(fill=tk.X)
        ttk.Checkbutton(row2, text="Auto-Antworten (ungelesene Chats)", variable=self._auto_var,
                        command=self._toggle_auto).pack(side=tk.LEFT)

        btns = ttk.Frame(frm); btns.pack(fill=tk.X, pady=(6, 0))
        ttk.Button(btns, text="scanne", command=lambda: self._send("scanne")).pack(side=tk.LEFT)
        ttk.Button(btns, text="ungelesen", command=lambda: self._send("ungelesen")).pack(side=tk.LEFT, padx=(8, 0))
        ttk.Button(btns, text="eins", command=lambda: self._send("eins")).pack(side=tk.LEFT, padx=(8, 0))
        ttk.Button(btns, text="chats", command=lambda: self._send("chats")).pack(side=tk.LEFT, padx=(8, 0))
        ttk.Button(btns, text="hilfe", command=lambda: self._send("hilfe")).pack(side=tk.LEFT, padx=(8, 0))

        ttk.Label(frm, text="Befehl:").pack(anchor="w", pady=(8, 0))
        self._entry = ttk.Entry(frm)
        self._entry.pack(fill=tk.X, pady=(4, 0))
        self._entry.bind("<Return>", self._on_enter)

        ttk.Label(frm, text="History:").pack(anchor="w", pady=(8, 0))
        self._history = tk.Text(frm, height=6, wrap=tk.WORD, state=tk.DISABLED)
        self._history.pack(fill=tk.BOTH, expand=True, pady=(4, 0))

        self._root.protocol("WM_DELETE_WINDOW", lambda: self._root.iconify())
        self._ready.set()
        self._root.mainloop()

    # Callbacks
    def _send(self, cmd: str):
        self._log_history(cmd)
        self.msg_queue.put(cmd)

    def _on_enter(self, _event):
        text = self._entry.get().strip()
        if text:
            self._send(text)
            self._entry.delete(0, "end")
        return "break"

    def _toggle_auto(self):
        self.msg_queue.put("auto an" if self._auto_var.get() else "auto aus")

    def _log_history(self, msg: str):
        self._history.configure(state=tk.NORMAL)
        self._history.insert("end", f"{msg}\n")
        self._history.configure(state=tk.DISABLED)
        self._history.see("end")

    # ProgressSink
    def report(self, step: str, detail: Optional[dict] = None, countdown: Optional[int] = None) -> None:
        def _apply():
            self._lbl_step.configure(text=step)
            self._lbl_countdown.configure(text=f"{countdown}s" if countdown is not None else "")
            self._detail.configure(state=tk.NORMAL)
            self._detail.delete("1.0", "end")
            self._detail.insert("1.0", "\n".join(detail_lines(detail)))
            self._detail.configure(state=tk.DISABLED)

        try:
            self._root.after(0, _apply)
        except Exception:
            pass
