"""Command-line realtime voice console.

Runs a voice session against a realtime service or relay using the local
microphone and speakers, with a small command prompt for turn control,
usage and the event log.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from realtime_console.audio.base import PlaybackDevice
from realtime_console.audio.sounddevice_io import SoundDeviceCapture, SoundDevicePlayback
from realtime_console.config import ConsoleConfig
from realtime_console.session import SessionController, SessionState
from realtime_console.transport.websocket_client import RealtimeWebSocketClient
from realtime_console.turn_mode import TurnMode
from realtime_console.utils.logging import log_event, setup_logging

HELP_TEXT = """
Commands:
  /talk       - Start or stop a push-to-talk turn (manual mode; Enter also works)
  /mode MODE  - Switch turn mode: manual or vad
  /interrupt  - Stop assistant playback
  /delete ID  - Delete a conversation item
  /usage      - Show token usage and cost
  /log [N]    - Show the last N event log entries (default 10)
  /quit       - Disconnect and exit
  /help       - Show this help
"""


class ConsoleCLI:
    """Interactive prompt driving a SessionController."""

    def __init__(
        self, controller: SessionController, playback: PlaybackDevice | None = None
    ) -> None:
        self.controller = controller
        self.playback = playback
        self.running = True
        self._closed = asyncio.Event()
        controller.add_state_listener(self._on_state_change)

    def _on_state_change(self, old_state: SessionState, new_state: SessionState) -> None:
        log_event("session_state", {"from": old_state.value, "to": new_state.value})
        if new_state is SessionState.IDLE:
            self._closed.set()

    def print_usage(self) -> None:
        ledger = self.controller.usage.ledger
        print("\nUsage")
        print(f"  text in:   {ledger.text_input_tokens:>8} tokens  ${ledger.text_input_cost:.4f}")
        print(f"  audio in:  {ledger.audio_input_tokens:>8} tokens  ${ledger.audio_input_cost:.4f}")
        print(f"  text out:  {ledger.text_output_tokens:>8} tokens  ${ledger.text_output_cost:.4f}")
        print(
            f"  audio out: {ledger.audio_output_tokens:>8} tokens  ${ledger.audio_output_cost:.4f}"
        )
        print(
            f"  cached:    {ledger.cached_text_tokens:>8} text, {ledger.cached_audio_tokens} audio"
        )
        print(f"  Total: {ledger.format_total()}  ({self.controller.timer.display()})\n")

    def print_log(self, limit: int = 10) -> None:
        event_log = self.controller.event_log
        for entry in event_log.entries[-limit:]:
            count = f" ({entry.display_count})" if entry.display_count else ""
            label = "error!" if entry.is_error else entry.source.value
            print(f"  {event_log.elapsed(entry)}  {label:<7} {entry.type}{count}")

    async def handle_command(self, text: str) -> None:
        """Execute one prompt command."""
        command, _, argument = text[1:].partition(" ")
        command = command.lower()
        argument = argument.strip()

        if command == "quit":
            self.running = False
        elif command == "help":
            print(HELP_TEXT)
        elif command == "talk":
            if self.controller.turn_mode.manual_turn_active:
                await self.controller.stop_manual_turn()
                print("Turn sent.")
            elif await self.controller.start_manual_turn():
                print("Recording... /talk again to send.")
            else:
                print(f"Cannot start a turn: {self.controller.last_error}")
        elif command == "mode":
            modes = {"manual": TurnMode.MANUAL, "vad": TurnMode.AUTO_VAD}
            if argument not in modes:
                print("Usage: /mode manual|vad")
            elif await self.controller.set_turn_mode(modes[argument]):
                print(f"Turn mode: {argument}")
        elif command == "interrupt":
            request = await self.controller.interrupt()
            print("Interrupted." if request else "Nothing playing.")
        elif command == "delete":
            if not argument:
                print("Usage: /delete ITEM_ID")
            else:
                await self.controller.delete_turn(argument)
        elif command == "usage":
            self.print_usage()
        elif command == "log":
            self.print_log(int(argument) if argument.isdigit() else 10)
        else:
            print(f"Unknown command: {command}")
            print("Type /help for available commands")

    async def input_loop(self) -> None:
        """Read commands from stdin until /quit or EOF."""
        print(HELP_TEXT)
        loop = asyncio.get_running_loop()
        last_transcript = ""

        while self.running:
            try:
                text = await loop.run_in_executor(None, input, "> ")
            except EOFError:
                self.running = False
                break

            text = text.strip()
            transcript = self.controller.latest_transcript
            if transcript and transcript != last_transcript:
                print(f"Assistant: {transcript}")
                last_transcript = transcript

            if text.startswith("/"):
                await self.handle_command(text)
            elif not text and self.controller.turn_mode.mode is TurnMode.MANUAL:
                await self.handle_command("/talk")
            elif text:
                print("Commands start with /. Type /help for available commands")

    async def run(self) -> int:
        """Connect, run the prompt, disconnect.

        Returns:
            Process exit code
        """
        if not await self.controller.connect():
            print(f"Connection failed: {self.controller.last_error}", file=sys.stderr)
            return 1

        print(f"Connected (turn mode: {self.controller.turn_mode.mode.value})")
        self._closed.clear()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._closed.set)

        input_task = asyncio.create_task(self.input_loop())
        closed_task = asyncio.create_task(self._closed.wait())
        try:
            await asyncio.wait({input_task, closed_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            closed_task.cancel()
            input_task.cancel()
            await self.controller.disconnect()
            if self.playback is not None:
                await self.playback.disconnect()

        if self.controller.last_error is not None:
            print(f"Session ended: {self.controller.last_error}")
        self.print_usage()
        return 0


def build_cli(config: ConsoleConfig) -> ConsoleCLI:
    """Create a prompt whose controller is wired to local audio and the WebSocket transport."""
    capture = SoundDeviceCapture(
        sample_rate=config.audio.sample_rate,
        chunk_samples=config.audio.chunk_samples,
        device=config.audio.input_device,
    )
    playback = SoundDevicePlayback(
        sample_rate=config.audio.sample_rate,
        device=config.audio.output_device,
    )
    transport = RealtimeWebSocketClient(config.realtime, sample_rate=config.audio.sample_rate)
    return ConsoleCLI(SessionController(capture, playback, transport, config), playback)


def main() -> None:
    """Main entry point for the console."""
    parser = argparse.ArgumentParser(description="Realtime voice console")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML configuration file (defaults plus environment if omitted)",
    )
    parser.add_argument("--url", type=str, default=None, help="Realtime service or relay URL")
    parser.add_argument(
        "--turn-mode",
        choices=["server_vad", "none"],
        default=None,
        help="Turn detection: server_vad (automatic) or none (push-to-talk)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    args = parser.parse_args()
    load_dotenv()

    try:
        config = ConsoleConfig.from_yaml_with_defaults(args.config)
        if args.url or args.turn_mode:
            data = config.model_dump()
            if args.url:
                data["realtime"]["url"] = args.url
            if args.turn_mode:
                data["session"]["turn_mode"] = args.turn_mode
            config = ConsoleConfig.model_validate(data)
    except (FileNotFoundError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging("DEBUG" if args.verbose else config.log_level, json_format=args.json_logs)

    async def _run() -> int:
        return await build_cli(config).run()

    try:
        sys.exit(asyncio.run(_run()))
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()
