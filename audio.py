"""Audible in-stock alert."""

import logging
import platform
import shutil
import subprocess
import sys
import time
from pathlib import Path
from typing import List, Optional

from errors import AudioPlaybackError

MACOS_DEFAULT_SOUND = "/System/Library/Sounds/Glass.aiff"
LINUX_PLAYERS = ("paplay", "aplay", "ffplay")


class SoundPlayer:
    """
    Plays the alert sound with whatever the platform offers.

    Windows uses ``winsound``; macOS ``afplay``; Linux the first of
    paplay/aplay/ffplay found on PATH. Without a sound file or a player the
    terminal bell is rung instead.
    """

    def __init__(
        self,
        sound_file: Optional[str] = None,
        repeat: int = 1,
        logger: Optional[logging.Logger] = None,
        timeout: float = 30.0
    ):
        self.sound_file = sound_file
        self.repeat = max(1, repeat)
        self.logger = logger or logging.getLogger(__name__)
        self.timeout = timeout
        self.system = platform.system()

    def play(self):
        """
        Play the alert sound, blocking until it finishes.

        Raises:
            AudioPlaybackError: if the sound could not be played
        """
        if self.sound_file and not Path(self.sound_file).exists():
            raise AudioPlaybackError(f"Alert sound file not found: {self.sound_file}")

        for i in range(self.repeat):
            self._play_once()
            if i < self.repeat - 1:
                time.sleep(0.2)

        self.logger.debug(f"Played alert sound x{self.repeat}")

    def _play_once(self):
        if self.system == "Windows":
            self._play_windows()
            return

        command = self._player_command()
        if command is None:
            self._ring_bell()
            return

        try:
            subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode(errors="replace").strip()
            raise AudioPlaybackError(f"{command[0]} exited with {e.returncode}: {stderr}") from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise AudioPlaybackError(f"Could not run {command[0]}: {e}") from e

    def _player_command(self) -> Optional[List[str]]:
        if self.system == "Darwin":
            sound = self.sound_file or MACOS_DEFAULT_SOUND
            return ["afplay", sound] if shutil.which("afplay") else None

        if not self.sound_file:
            return None

        for player in LINUX_PLAYERS:
            if shutil.which(player):
                if player == "ffplay":
                    return [player, "-nodisp", "-autoexit", "-loglevel", "quiet", self.sound_file]
                return [player, self.sound_file]
        return None

    def _play_windows(self):
        try:
            import winsound
            if self.sound_file:
                winsound.PlaySound(self.sound_file, winsound.SND_FILENAME)
            else:
                winsound.MessageBeep(winsound.MB_ICONASTERISK)
        except (ImportError, RuntimeError) as e:
            raise AudioPlaybackError(f"winsound playback failed: {e}") from e

    @staticmethod
    def _ring_bell():
        try:
            sys.stdout.write('\a')
            sys.stdout.flush()
        except (OSError, ValueError) as e:
            raise AudioPlaybackError(f"Could not ring terminal bell: {e}") from e
