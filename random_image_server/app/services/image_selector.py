import asyncio
import os
import random
from typing import Dict, List, Optional, Sequence

import aiofiles.os

from random_image_server.errors import DirectoryUnreadable, NoEligibleFiles
from random_image_server.logger_config import setup_logger

logger = setup_logger()


def file_extension(file_name: str) -> str:
    """Return the extension including its leading dot, or "" when there is none."""
    index = file_name.rfind(".")
    if index < 0:
        return ""
    return file_name[index:]


def is_valid_extension(file_name: str, allowed_extensions: Sequence[str]) -> bool:
    """Check if the file extension is in the allowed list (case-sensitive)."""
    return file_extension(file_name) in allowed_extensions


class ImageSelector:
    def __init__(self, rng: Optional[random.Random] = None, avoid_repeat: bool = False):
        """
        Args:
            rng: Source of randomness. Pass a seeded instance for reproducible picks
            avoid_repeat: Skip the file served last for the same directory
        """
        self.rng = rng or random.Random()
        self.avoid_repeat = avoid_repeat
        self.last_served: Dict[str, str] = {}
        self.last_served_lock = asyncio.Lock()

    async def list_candidates(
        self,
        directory: str,
        allowed_extensions: Sequence[str],
        disable_file_type_check: bool = False,
        headers: Optional[Dict[str, str]] = None,
    ) -> List[str]:
        """List the files of `directory` eligible for selection.

        Subdirectories are skipped. Names are sorted so the candidate order
        does not depend on the filesystem.

        Raises:
            DirectoryUnreadable: the directory can't be listed
            NoEligibleFiles: nothing passed the filter
        """
        try:
            names = await aiofiles.os.listdir(directory)
        except OSError as e:
            logger.error(f"Unable to read image directory {directory}: {str(e)}")
            raise DirectoryUnreadable(directory, headers=headers)

        candidates = []
        for name in sorted(names):
            if await aiofiles.os.path.isdir(os.path.join(directory, name)):
                continue
            if disable_file_type_check or is_valid_extension(name, allowed_extensions):
                candidates.append(name)

        logger.debug(f"Found {len(candidates)} candidate(s) out of {len(names)} entries in {directory}")

        if not candidates:
            raise NoEligibleFiles(directory, headers=headers)
        return candidates

    async def choose(self, directory: str, candidates: List[str]) -> str:
        """Pick one candidate uniformly at random."""
        if not self.avoid_repeat:
            return self.rng.choice(candidates)

        async with self.last_served_lock:
            last = self.last_served.get(directory)
            pool = [name for name in candidates if name != last] or candidates
            selected = self.rng.choice(pool)
            self.last_served[directory] = selected
        return selected
