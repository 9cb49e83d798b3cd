from typing import Dict, List, Optional
import asyncio
from collections import defaultdict

from scriptkill.domain.models.script_records import Script, Character, Clue, Player
from scriptkill.domain.models.session_state import Scene


class RecordRepository:
    """Keeps scripts, characters, clues, scenes and players for the process lifetime"""

    def __init__(self):
        self.scripts: Dict[str, Script] = {}
        self.characters: Dict[str, List[Character]] = defaultdict(list)
        self.clues: Dict[str, List[Clue]] = defaultdict(list)
        self.scenes: Dict[str, List[Scene]] = defaultdict(list)
        self.players: Dict[str, Player] = {}
        self._lock = asyncio.Lock()

    async def save_script(self, script: Script) -> Script:
        async with self._lock:
            self.scripts[script.id] = script
            return script

    async def save_characters(self, characters: List[Character]) -> List[Character]:
        """Store characters, keeping their declaration order per script"""

        async with self._lock:
            for character in characters:
                self.characters[character.script_id].append(character)
                self.characters[character.script_id].sort(key=lambda c: c.order)
            return characters

    async def list_characters(self, script_id: str) -> List[Character]:
        async with self._lock:
            return list(self.characters.get(script_id, []))

    async def get_character(self, script_id: str, character_id: str) -> Optional[Character]:
        async with self._lock:
            for character in self.characters.get(script_id, []):
                if character.id == character_id:
                    return character
            return None

    async def save_clues(self, clues: List[Clue]) -> List[Clue]:
        async with self._lock:
            for clue in clues:
                self.clues[clue.script_id].append(clue)
            return clues

    async def list_clues(self, script_id: str) -> List[Clue]:
        async with self._lock:
            return list(self.clues.get(script_id, []))

    async def save_scenes(self, scenes: List[Scene]) -> List[Scene]:
        async with self._lock:
            for scene in scenes:
                self.scenes[scene.script_id].append(scene)
            return scenes

    async def list_scenes(self, script_id: str) -> List[Scene]:
        async with self._lock:
            return list(self.scenes.get(script_id, []))

    async def save_player(self, player: Player) -> Player:
        async with self._lock:
            self.players[player.id] = player
            return player

    async def get_player(self, player_id: str) -> Optional[Player]:
        async with self._lock:
            return self.players.get(player_id)
