"""
BaseChat - Main Window (CustomTkinter)

Single window comparing a base model with its chat-tuned sibling:
- Header: Base/Chat switch, model description, temperature slider
- Loading overlay: status text + progress bar while a model loads
- Base view: prompt entry, streamed continuation
- Chat view: editable conversation cards, "Add user message", "Generate"

All inference runs in the InferenceWorkerManager's process. The window sends
commands and polls the worker's event queue every UI_POLL_INTERVAL_MS.
"""

from tkinter import messagebox

import customtkinter as ctk

from basechat.config import (
    DEFAULT_TEMPERATURE,
    MAX_TEMPERATURE,
    MIN_TEMPERATURE,
    UI_POLL_INTERVAL_MS,
    get_model_config,
)
from basechat.conversation import Conversation, Role
from basechat.logging_config import debug_log
from basechat.session.worker import InferenceWorkerManager
from basechat.ui.queue_message_handler import QueueMessageHandler

_ROLE_COLORS = {
    Role.SYSTEM: ("#e8e0f7", "#3b3350"),
    Role.USER: ("#dde9f7", "#2b3a4d"),
    Role.ASSISTANT: ("#e2f4e5", "#2d4431"),
}


class MainWindow(ctk.CTk):
    """Main application window for BaseChat."""

    def __init__(self):
        super().__init__()

        self.title("BaseChat")
        self.geometry("900x700")
        self.minsize(700, 500)

        # State
        self.is_chat_mode = False
        self.base_prompt = ""
        self.conversation = Conversation()
        self._message_boxes: list[ctk.CTkTextbox] = []
        self._poll_id: str | None = None

        self.worker_manager = InferenceWorkerManager()
        self.message_handler = QueueMessageHandler(self)

        self._create_header()
        self._create_loading_overlay()
        self._create_base_view()
        self._create_chat_view()

        self.protocol("WM_DELETE_WINDOW", self._on_close)
        self._update_view()
        self._load_model()
        self._poll_worker()

    # =========================================================================
    # Layout
    # =========================================================================

    def _create_header(self):
        self.header_frame = ctk.CTkFrame(self, corner_radius=0)
        self.header_frame.pack(fill="x")

        self.title_label = ctk.CTkLabel(
            self.header_frame,
            text="BaseChat",
            font=ctk.CTkFont(size=20, weight="bold")
        )
        self.title_label.pack(side="left", padx=15, pady=10)

        self.mode_switch = ctk.CTkSwitch(
            self.header_frame,
            text="Chat model",
            command=self._on_mode_toggled
        )
        self.mode_switch.pack(side="left", padx=10)

        self.temp_value_label = ctk.CTkLabel(self.header_frame, text=f"{DEFAULT_TEMPERATURE:.1f}", width=30)
        self.temp_value_label.pack(side="right", padx=(0, 15))
        self.temperature_slider = ctk.CTkSlider(
            self.header_frame,
            from_=MIN_TEMPERATURE,
            to=MAX_TEMPERATURE,
            width=160,
            command=lambda value: self.temp_value_label.configure(text=f"{value:.1f}")
        )
        self.temperature_slider.set(DEFAULT_TEMPERATURE)
        self.temperature_slider.pack(side="right", padx=5)
        ctk.CTkLabel(self.header_frame, text="Temperature").pack(side="right")

        self.description_label = ctk.CTkLabel(self, text="", anchor="w", wraplength=860, justify="left")
        self.description_label.pack(fill="x", padx=15, pady=(5, 0))

    def _create_loading_overlay(self):
        self.loading_frame = ctk.CTkFrame(self)
        self.loading_label = ctk.CTkLabel(self.loading_frame, text="")
        self.loading_label.pack(padx=15, pady=(10, 5))
        self.progress_bar = ctk.CTkProgressBar(self.loading_frame, width=400)
        self.progress_bar.set(0)
        self.progress_bar.pack(padx=15, pady=(0, 10))

    def _create_base_view(self):
        self.base_frame = ctk.CTkFrame(self, fg_color="transparent")

        # The continuation is shown under the prompt it continues
        self.base_prompt_echo = ctk.CTkLabel(
            self.base_frame, text="", anchor="w", justify="left", wraplength=820,
            font=ctk.CTkFont(weight="bold")
        )
        self.base_prompt_echo.pack(fill="x", padx=10, pady=(5, 0))

        self.base_output = ctk.CTkTextbox(self.base_frame, wrap="word")
        self.base_output.pack(fill="both", expand=True, padx=5, pady=5)

        input_row = ctk.CTkFrame(self.base_frame, fg_color="transparent")
        input_row.pack(fill="x", padx=5, pady=5)
        self.base_prompt_entry = ctk.CTkEntry(input_row, placeholder_text="Start a sentence and let the model continue it...")
        self.base_prompt_entry.pack(side="left", fill="x", expand=True)
        self.base_prompt_entry.bind("<Return>", lambda _event: self._generate_base())
        self.base_generate_btn = ctk.CTkButton(input_row, text="Generate", width=100, command=self._generate_base)
        self.base_generate_btn.pack(side="right", padx=(5, 0))

    def _create_chat_view(self):
        self.chat_frame = ctk.CTkFrame(self, fg_color="transparent")

        self.messages_frame = ctk.CTkScrollableFrame(self.chat_frame)
        self.messages_frame.pack(fill="both", expand=True, padx=5, pady=5)

        button_row = ctk.CTkFrame(self.chat_frame, fg_color="transparent")
        button_row.pack(fill="x", padx=5, pady=5)
        self.add_user_btn = ctk.CTkButton(button_row, text="Add user message", command=self._add_user_message)
        self.add_user_btn.pack(side="left")
        self.chat_generate_btn = ctk.CTkButton(button_row, text="Generate", width=120, command=self._generate_chat)
        self.chat_generate_btn.pack(side="right")

    # =========================================================================
    # Methods used by QueueMessageHandler
    # =========================================================================

    def set_loading_text(self, text: str):
        self.loading_label.configure(text=text)

    def set_progress(self, percentage: float):
        self.progress_bar.set(max(0.0, min(percentage, 100.0)) / 100.0)

    def show_loading_overlay(self, text: str):
        self.set_loading_text(text)
        self.progress_bar.set(0)
        self.loading_frame.pack(fill="x", padx=15, pady=10, before=self._active_view())

    def hide_loading_overlay(self):
        self.loading_frame.pack_forget()

    def set_controls_enabled(self, enabled: bool):
        state = "normal" if enabled else "disabled"
        for widget in (self.base_generate_btn, self.base_prompt_entry, self.chat_generate_btn, self.mode_switch):
            widget.configure(state=state)
        self.add_user_btn.configure(
            state="normal" if enabled and self.conversation.can_add_user_message() else "disabled"
        )
        for box in self._message_boxes:
            box.configure(state=state)

    def set_chat_generating(self, generating: bool):
        self.chat_generate_btn.configure(text="Generating..." if generating else "Generate")

    def set_base_prompt_echo(self, prompt: str):
        self.base_prompt_echo.configure(text=prompt)

    def get_base_output(self) -> str:
        return self.base_output.get("1.0", "end-1c")

    def set_base_output(self, text: str):
        self.base_output.delete("1.0", "end")
        self.base_output.insert("1.0", text)

    def append_base_output(self, chunk: str):
        self.base_output.insert("end", chunk)
        self.base_output.see("end")

    def set_base_streaming(self, streaming: bool):
        self.base_output.configure(border_width=2 if streaming else 0)
        if not streaming:
            self.base_prompt_entry.focus_set()

    def show_error(self, message: str):
        messagebox.showerror("Error", message)

    def render_conversation(self):
        """Rebuild the message cards from the conversation."""
        for child in self.messages_frame.winfo_children():
            child.destroy()
        self._message_boxes = []

        for index, message in enumerate(self.conversation):
            card = ctk.CTkFrame(self.messages_frame, fg_color=_ROLE_COLORS[message.role])
            card.pack(fill="x", padx=5, pady=4)

            header = ctk.CTkFrame(card, fg_color="transparent")
            header.pack(fill="x", padx=8, pady=(4, 0))
            ctk.CTkLabel(header, text=message.role.value.capitalize(),
                         font=ctk.CTkFont(weight="bold")).pack(side="left")
            if index >= Conversation.PERMANENT_MESSAGES:
                ctk.CTkButton(
                    header, text="×", width=28,
                    command=lambda i=index: self._delete_from(i)
                ).pack(side="right")

            box = ctk.CTkTextbox(card, height=max(50, 20 * (len(message.content) // 80 + 2)), wrap="word")
            box.insert("1.0", message.content)
            box.pack(fill="x", padx=8, pady=(2, 8))
            box.bind("<KeyRelease>", lambda _event, i=index, b=box: self._on_message_edited(i, b))
            self._message_boxes.append(box)

        self.add_user_btn.configure(
            state="normal" if self.conversation.can_add_user_message() else "disabled"
        )

    # =========================================================================
    # Actions
    # =========================================================================

    def _active_view(self):
        return self.chat_frame if self.is_chat_mode else self.base_frame

    def _model_type(self) -> str:
        return "chat" if self.is_chat_mode else "base"

    def _update_view(self):
        self.base_frame.pack_forget()
        self.chat_frame.pack_forget()
        self._active_view().pack(fill="both", expand=True, padx=10, pady=10)
        self.description_label.configure(text=get_model_config(self._model_type()).get('description', ""))
        if self.is_chat_mode:
            self.render_conversation()

    def _on_mode_toggled(self):
        # A fresh worker guarantees the previous model's memory is gone.
        # Its last events still belong to the old view.
        for message in self.worker_manager.stop_worker():
            self.message_handler.process_message(message)

        self.is_chat_mode = bool(self.mode_switch.get())
        debug_log(f"[MAIN WINDOW] Switched to {self._model_type()} model")
        self._update_view()
        self._load_model()

    def _load_model(self):
        self.show_loading_overlay("Loading model... (this may take a minute the first time)")
        self.set_controls_enabled(False)
        self.worker_manager.send_command({'action': 'load', 'modelType': self._model_type()})

    def _temperature(self) -> float:
        return round(float(self.temperature_slider.get()), 2)

    def _generate_base(self):
        text = self.base_prompt_entry.get()
        if not text.strip():
            return
        self.base_prompt = text
        self.set_controls_enabled(False)
        self.worker_manager.send_command({
            'action': 'generate',
            'modelType': 'base',
            'text': text,
            'temperature': self._temperature(),
        })

    def _generate_chat(self):
        if not self.conversation.ready_for_generation():
            return
        self.set_controls_enabled(False)
        self.worker_manager.send_command({
            'action': 'generate',
            'modelType': 'chat',
            'messages': self.conversation.to_dicts(),
            'temperature': self._temperature(),
        })

    def _add_user_message(self):
        if not self.conversation.can_add_user_message():
            return
        self.conversation.add_user_message()
        self.render_conversation()
        if self._message_boxes:
            self._message_boxes[-1].focus_set()

    def _delete_from(self, index: int):
        self.conversation.truncate(index)
        self.render_conversation()

    def _on_message_edited(self, index: int, box: ctk.CTkTextbox):
        self.conversation.set_content(index, box.get("1.0", "end-1c"))

    def _poll_worker(self):
        """Drain worker events and reschedule."""
        for message in self.worker_manager.check_for_messages():
            self.message_handler.process_message(message)
        self._poll_id = self.after(UI_POLL_INTERVAL_MS, self._poll_worker)

    def _on_close(self):
        if self._poll_id:
            self.after_cancel(self._poll_id)
        self.worker_manager.stop_worker()
        self.destroy()
