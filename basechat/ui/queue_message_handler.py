"""
Queue Message Handler Module

Routes status events from the inference worker to the window. UI updates
ONLY: which command to send next is the window's business.

Events Handled:
- device: Show which compute backend is loading the model
- progress: Update progress bar and loading text
- ready: Hide the loading overlay and unlock controls
- start: Echo the prompt above a cleared base output / mark the chat button as generating
- update: Append a streamed chunk to the base output
- complete: Show the final base text or append the assistant reply
- error: Show an error dialog and reset the UI
"""

from basechat.logging_config import debug_log


class QueueMessageHandler:
    """
    Routes worker events to the window's update methods.

    The window is duck-typed so the handler can be tested with a mock.

    Attributes:
        main_window: The MainWindow (or any object with the same methods)
    """

    def __init__(self, main_window):
        self.main_window = main_window

    def handle_device(self, data: dict):
        backend = "GPU" if data.get('device') == 'accelerated' else "CPU"
        self.main_window.set_loading_text(f"Loading model... using {backend}")

    def handle_progress(self, data: dict):
        """
        Args:
            data: {'progress': 0-100, 'file': optional file name}
        """
        progress = data.get('progress') or 0
        if not progress:
            return
        self.main_window.set_progress(progress)
        self.main_window.set_loading_text(f"Downloading model files... {round(progress)}%")

    def handle_ready(self, data: dict):
        debug_log(f"[QUEUE HANDLER] Model ready (cached={data.get('cached', False)})")
        self.main_window.hide_loading_overlay()
        self.main_window.set_progress(100)
        self.main_window.set_controls_enabled(True)

    def handle_start(self, data: dict):
        if self.main_window.is_chat_mode:
            self.main_window.set_chat_generating(True)
        else:
            self.main_window.set_base_prompt_echo(self.main_window.base_prompt)
            self.main_window.set_base_output("")
            self.main_window.set_base_streaming(True)

    def handle_update(self, data: dict):
        # Chat mode never streams
        if not self.main_window.is_chat_mode:
            self.main_window.append_base_output(data.get('chunk', ""))

    def handle_complete(self, data: dict):
        """
        Args:
            data: {'fullText': str} in base mode, {'assistantReply': str} in chat mode
        """
        if self.main_window.is_chat_mode:
            self.main_window.set_chat_generating(False)
            if data.get('assistantReply') is not None:
                self.main_window.conversation.add_assistant_reply(data['assistantReply'])
                self.main_window.render_conversation()
        else:
            full_text = data.get('fullText')
            # The final decode wins over what was streamed
            if full_text and full_text != self.main_window.get_base_output():
                self.main_window.set_base_output(full_text)
            self.main_window.set_base_streaming(False)
        self.main_window.set_controls_enabled(True)

    def handle_error(self, data: dict):
        message = data.get('message', "Unknown error")
        debug_log(f"[QUEUE HANDLER] Worker error: {message}")
        self.main_window.show_error(message)
        self.main_window.hide_loading_overlay()
        self.main_window.set_chat_generating(False)
        if not self.main_window.is_chat_mode:
            self.main_window.set_base_output("Error generating response.")
            self.main_window.set_base_streaming(False)
        self.main_window.set_controls_enabled(True)

    def process_message(self, message: dict) -> bool:
        """
        Route an event to the matching handler.

        Returns:
            True if the event was handled, False otherwise
        """
        handlers = {
            'device': self.handle_device,
            'progress': self.handle_progress,
            'ready': self.handle_ready,
            'start': self.handle_start,
            'update': self.handle_update,
            'complete': self.handle_complete,
            'error': self.handle_error,
        }

        status = message.get('status')
        handler = handlers.get(status)
        if handler:
            try:
                handler(message)
                return True
            except Exception as e:
                debug_log(f"[QUEUE HANDLER] Error handling {status}: {e}")
                return False

        debug_log(f"[QUEUE HANDLER] Unknown event status: {status}")
        return False
