"""
service_client.py -- JSON-RPC wrapper for the dungeon encounter service using only the standard library.

Handles:
  - Ledger calls (fee-currency balances, transfers, allowances)
  - Game calls (monsters, players, encounters, combat rounds, potions)
  - Event log queries (round results and encounter outcomes since a log position)
  - Request signing when an API secret is configured

REQUEST SIGNING (how it works):
  1. Generate a nonce (monotonically increasing number -- millisecond timestamp)
     and use it as the JSON-RPC request id
  2. Serialize the request body as compact JSON
  3. Compute: HMAC-SHA512(nonce + body, key=base64_decode(api_secret))
  4. Base64-encode the HMAC result -> this goes in the "API-Sign" header

Every call either returns the decoded "result" member or raises ServiceError.
There is no retry: the transport is assumed reliable, so any failure here ends
the run.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

import config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Event names in the service's log
# ---------------------------------------------------------------------------
PLAYER_RESULT = "PlayerResult"
MONSTER_RESULT = "MonsterResult"
ENCOUNTER_OVER = "EncounterOver"

_RESULT_EVENTS = {"player": PLAYER_RESULT, "monster": MONSTER_RESULT}


class ServiceError(Exception):
    """Transport failure, remote rejection or malformed response."""


# ---------------------------------------------------------------------------
# Nonce / seed generation
# ---------------------------------------------------------------------------
# Millisecond timestamps with a floor so values stay strictly increasing even
# when two calls land in the same millisecond or the clock steps back.


class _MonotonicStamp:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last = 0

    def next(self) -> int:
        with self._lock:
            stamp = int(time.time() * 1000)
            if stamp <= self._last:
                stamp = self._last + 1
            self._last = stamp
            return stamp


_nonces = _MonotonicStamp()
_seeds = _MonotonicStamp()


def _make_nonce() -> int:
    return _nonces.next()


def make_seed() -> int:
    """Fresh seed for one combat-round request; never repeats within a process."""
    return _seeds.next()


# ---------------------------------------------------------------------------
# Request signature
# ---------------------------------------------------------------------------

def _sign(nonce: int, body: bytes, secret: str) -> str:
    """
    Create the API-Sign header value for one request.

    Steps:
      1. Prefix the serialized body with the nonce
      2. HMAC-SHA-512 of that message using the base64-decoded secret
      3. Base64-encode the HMAC digest
    """
    secret_bytes = base64.b64decode(secret)
    message = str(nonce).encode("utf-8") + body
    mac = hmac.new(secret_bytes, message, hashlib.sha512)
    return base64.b64encode(mac.digest()).decode("utf-8")


# ---------------------------------------------------------------------------
# Field decoding
# ---------------------------------------------------------------------------
# The service reports big integers as decimal strings and booleans as either
# JSON booleans or "true"/"false".  Anything else is a malformed response.

def _int(row: dict, key: str) -> int:
    if not isinstance(row, dict) or key not in row or row[key] is None:
        raise ServiceError(f"response missing field {key!r}: {row!r}")
    value = row[key]
    if isinstance(value, bool):
        raise ServiceError(f"field {key!r} is not an integer: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ServiceError(f"field {key!r} is not an integer: {value!r}") from e


def _optional_int(row: dict, key: str) -> int | None:
    if not isinstance(row, dict) or row.get(key) is None:
        return None
    return _int(row, key)


def _bool(row: dict, key: str) -> bool:
    if not isinstance(row, dict) or key not in row:
        raise ServiceError(f"response missing field {key!r}: {row!r}")
    value = row[key]
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
        return value.strip().lower() in ("true", "1")
    raise ServiceError(f"field {key!r} is not a boolean: {value!r}")


def _str(row: dict, key: str) -> str:
    if not isinstance(row, dict) or key not in row:
        raise ServiceError(f"response missing field {key!r}: {row!r}")
    return str(row[key] or "")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Monster:
    monster_id: int
    name: str
    ac: int
    hp: int
    str_mod: int
    atk: int
    dmg: int

    @property
    def exists(self) -> bool:
        # Unseeded slots read back as all zeros.
        return self.ac > 0

    @classmethod
    def from_row(cls, monster_id: int, row: dict) -> "Monster":
        return cls(
            monster_id=int(monster_id),
            name=_str(row, "name"),
            ac=_int(row, "ac"),
            hp=_int(row, "hp"),
            str_mod=_int(row, "str"),
            atk=_int(row, "atk"),
            dmg=_int(row, "dmg"),
        )


@dataclass(frozen=True)
class Player:
    participant: str
    name: str
    ac: int
    hp: int
    str_mod: int
    atk: int
    dmg: int
    healing_potions: int
    won: int
    lost: int

    @property
    def exists(self) -> bool:
        return self.hp > 0

    @classmethod
    def from_row(cls, participant: str, row: dict) -> "Player":
        return cls(
            participant=participant,
            name=_str(row, "name"),
            ac=_int(row, "ac"),
            hp=_int(row, "hp"),
            str_mod=_int(row, "str"),
            atk=_int(row, "atk"),
            dmg=_int(row, "dmg"),
            healing_potions=_int(row, "healingPotions"),
            won=_int(row, "won"),
            lost=_int(row, "lost"),
        )


@dataclass(frozen=True)
class EncounterView:
    encounter_id: int
    is_rolling: bool
    player_hp: int
    monster_hp: int
    rounds: int | None = None

    @classmethod
    def from_row(cls, encounter_id: int, row: dict) -> "EncounterView":
        return cls(
            encounter_id=int(encounter_id),
            is_rolling=_bool(row, "isRolling"),
            player_hp=_int(row, "playerHp"),
            monster_hp=_int(row, "monsterHp"),
            rounds=_optional_int(row, "rounds"),
        )


@dataclass(frozen=True)
class EncounterTicket:
    """Encounter id plus the log position its round events become visible from."""
    encounter_id: int
    position: int


@dataclass(frozen=True)
class RoundResult:
    side: str
    encounter_id: int
    roll: int
    modified: int
    hit: bool
    is_crit: bool
    damage: int
    opponent_hp: int
    round_number: int | None = None
    position: int = 0

    @classmethod
    def from_record(cls, side: str, record: dict) -> "RoundResult":
        values = record.get("returnValues") if isinstance(record, dict) else None
        if not isinstance(values, dict):
            raise ServiceError(f"event record without returnValues: {record!r}")
        # Player results report the monster's remaining HP and vice versa.
        opponent_key = "monsterHp" if side == "player" else "playerHp"
        return cls(
            side=side,
            encounter_id=_int(values, "encounterId"),
            roll=_int(values, "roll"),
            modified=_int(values, "modified"),
            hit=_bool(values, "hit"),
            is_crit=_bool(values, "isCrit"),
            damage=_int(values, "damage"),
            opponent_hp=_int(values, opponent_key),
            round_number=_optional_int(values, "round"),
            position=_optional_int(record, "position") or 0,
        )


@dataclass(frozen=True)
class EncounterOver:
    encounter_id: int
    player_won: bool
    position: int = 0

    @classmethod
    def from_record(cls, record: dict) -> "EncounterOver":
        values = record.get("returnValues") if isinstance(record, dict) else None
        if not isinstance(values, dict):
            raise ServiceError(f"event record without returnValues: {record!r}")
        return cls(
            encounter_id=_int(values, "encounterId"),
            player_won=_bool(values, "playerWon"),
            position=_optional_int(record, "position") or 0,
        )


@dataclass(frozen=True)
class GameConstants:
    stat_fee: int
    healing_potion_fee: int
    max_healing_potions: int
    max_ac: int
    max_hp: int
    max_str: int
    max_atk: int
    max_dmg: int

    @classmethod
    def from_row(cls, row: dict) -> "GameConstants":
        return cls(
            stat_fee=_int(row, "statFee"),
            healing_potion_fee=_int(row, "healingPotionFee"),
            max_healing_potions=_int(row, "maxHealingPotions"),
            max_ac=_int(row, "maxPlayerAc"),
            max_hp=_int(row, "maxPlayerHp"),
            max_str=_int(row, "maxPlayerStr"),
            max_atk=_int(row, "maxPlayerAtk"),
            max_dmg=_int(row, "maxPlayerDmg"),
        )


# ===========================================================================
# CLIENT
# ===========================================================================


class ServiceClient:
    """Thin typed facade over the service's JSON-RPC methods."""

    def __init__(self, url: str | None = None, api_key: str | None = None, api_secret: str | None = None,
                 timeout: float | None = None):
        self.url = url or config.SERVICE_URL
        self.api_key = config.SERVICE_API_KEY if api_key is None else api_key
        self.api_secret = config.SERVICE_API_SECRET if api_secret is None else api_secret
        self.timeout = float(timeout or config.REQUEST_TIMEOUT_SEC)
        self._service_address = config.SERVICE_ADDRESS or None

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _request(self, data: bytes, headers: dict) -> dict:
        """
        POST one JSON-RPC body and return the parsed JSON response.

        Raises ServiceError on HTTP errors, network errors or invalid JSON.
        """
        headers.setdefault("User-Agent", "DungeonHarness/1.0")
        req = urllib.request.Request(self.url, data=data, headers=headers)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            text = e.read().decode("utf-8", errors="replace")
            logger.error("HTTP %d from %s: %s", e.code, self.url, text[:500])
            raise ServiceError(f"HTTP {e.code} from service") from e
        except urllib.error.URLError as e:
            logger.error("URL error for %s: %s", self.url, e.reason)
            raise ServiceError(f"service unreachable: {e.reason}") from e
        except OSError as e:
            logger.error("Request failed for %s: %s", self.url, e)
            raise ServiceError(f"request failed: {e}") from e
        try:
            parsed = json.loads(body)
        except ValueError as e:
            raise ServiceError(f"service returned invalid JSON: {body[:200]!r}") from e
        if not isinstance(parsed, dict):
            raise ServiceError(f"service returned non-object response: {body[:200]!r}")
        return parsed

    def call(self, method: str, params: dict | None = None) -> Any:
        """
        Invoke one JSON-RPC method.  Signs the request when a secret is set.
        Returns the 'result' member or raises ServiceError.
        """
        nonce = _make_nonce()
        payload = {"jsonrpc": "2.0", "id": nonce, "method": method, "params": params or {}}
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")

        headers = {"Content-Type": "application/json"}
        if self.api_secret:
            headers["API-Key"] = self.api_key
            headers["API-Sign"] = _sign(nonce, body, self.api_secret)

        logger.debug("-> %s %s", method, params)
        resp = self._request(body, headers)

        error = resp.get("error")
        if error:
            message = error.get("message", error) if isinstance(error, dict) else error
            raise ServiceError(f"{method} rejected: {message}")
        if "result" not in resp:
            raise ServiceError(f"{method} response has no result: {resp!r}")
        return resp["result"]

    def _row(self, method: str, params: dict) -> dict:
        row = self.call(method, params)
        if not isinstance(row, dict):
            raise ServiceError(f"{method} returned {type(row).__name__}, expected object")
        return row

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def accounts(self) -> list[str]:
        result = self.call("accounts")
        if not isinstance(result, list):
            raise ServiceError(f"accounts returned {result!r}")
        return [str(a) for a in result]

    def token_balance(self, account: str) -> int:
        return _int({"balance": self.call("token_balanceOf", {"account": account})}, "balance")

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        self.call("token_transfer", {"from": sender, "to": recipient, "amount": str(int(amount))})

    def increase_allowance(self, owner: str, spender: str, amount: int) -> None:
        self.call("token_increaseAllowance", {"from": owner, "spender": spender, "amount": str(int(amount))})

    # ------------------------------------------------------------------
    # Service constants
    # ------------------------------------------------------------------

    def service_address(self) -> str:
        if not self._service_address:
            self._service_address = str(self.call("encounters_address"))
        return self._service_address

    def provider_fee(self, provider_key: str) -> int:
        fee = self.call("oracle_providerFee", {"keyHash": provider_key, "consumer": self.service_address()})
        return _int({"fee": fee}, "fee")

    def game_constants(self) -> GameConstants:
        return GameConstants.from_row(self._row("encounters_constants", {}))

    def authorize_oracle(self, owner: str, amount: int) -> None:
        """Let the combat service spend its own fee-currency on oracle requests."""
        self.call("encounters_increaseOracleAllowance", {"from": owner, "amount": str(int(amount))})

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    def seed_monster(self, owner: str, name: str, ac: int, hp: int, str_mod: int, atk: int, dmg: int) -> None:
        self.call("encounters_addMonster", {
            "from": owner, "name": name, "ac": ac, "hp": hp, "str": str_mod, "atk": atk, "dmg": dmg,
        })

    def read_monster(self, monster_id: int) -> Monster:
        return Monster.from_row(monster_id, self._row("encounters_monsters", {"id": int(monster_id)}))

    def next_monster_id(self) -> int:
        return _int({"id": self.call("encounters_nextMonsterId")}, "id")

    def create_player(self, participant: str, name: str) -> None:
        self.call("encounters_createPlayer", {"from": participant, "name": name})

    def read_player(self, participant: str) -> Player:
        return Player.from_row(participant, self._row("encounters_players", {"account": participant}))

    # ------------------------------------------------------------------
    # Stat upgrades (each a paid action)
    # ------------------------------------------------------------------

    def increase_armour_class(self, participant: str) -> None:
        self.call("encounters_increaseArmourClass", {"from": participant})

    def increase_hit_points(self, participant: str) -> None:
        self.call("encounters_increaseHitPoints", {"from": participant})

    def increase_strength_modifier(self, participant: str) -> None:
        self.call("encounters_increaseStrengthModifier", {"from": participant})

    def increase_attack_dice(self, participant: str) -> None:
        self.call("encounters_increaseAttackDice", {"from": participant})

    def increase_damage_modifier(self, participant: str) -> None:
        self.call("encounters_increaseDamageModifier", {"from": participant})

    # ------------------------------------------------------------------
    # Encounters
    # ------------------------------------------------------------------

    def new_encounter(self, participant: str, monster_id: int) -> EncounterTicket:
        row = self._row("encounters_newEncounter", {"from": participant, "monsterId": int(monster_id)})
        return EncounterTicket(encounter_id=_int(row, "encounterId"), position=_int(row, "position"))

    def read_encounter(self, encounter_id: int) -> EncounterView:
        return EncounterView.from_row(encounter_id, self._row("encounters_encounters", {"encounterId": int(encounter_id)}))

    def begin_combat_round(self, participant: str, encounter_id: int, seed: int, provider_key: str, fee: int) -> None:
        self.call("encounters_beginCombatRound", {
            "from": participant,
            "encounterId": int(encounter_id),
            "seed": str(int(seed)),
            "keyHash": provider_key,
            "fee": str(int(fee)),
        })

    def drink_healing_potion(self, participant: str, encounter_id: int) -> None:
        self.call("encounters_drinkHealingPotion", {"from": participant, "encounterId": int(encounter_id)})

    def buy_healing_potion(self, participant: str) -> None:
        self.call("encounters_buyHealingPotion", {"from": participant})

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------

    def fetch_events(self, kind: str, encounter_id: int, from_position: int, to_position="latest") -> list[dict]:
        """
        Fetch raw event records of one kind for one encounter, in emission order.
        """
        result = self.call("encounters_getPastEvents", {
            "event": kind,
            "filter": {"encounterId": int(encounter_id)},
            "fromPosition": int(from_position),
            "toPosition": to_position,
        })
        if not isinstance(result, list):
            raise ServiceError(f"getPastEvents({kind}) returned {type(result).__name__}, expected list")
        return result

    def fetch_round_results(self, side: str, encounter_id: int, from_position: int) -> list[RoundResult]:
        kind = _RESULT_EVENTS.get(side)
        if kind is None:
            raise ValueError(f"unknown side {side!r}")
        records = self.fetch_events(kind, encounter_id, from_position)
        return [RoundResult.from_record(side, r) for r in records]

    def fetch_encounter_over(self, encounter_id: int, from_position: int) -> list[EncounterOver]:
        records = self.fetch_events(ENCOUNTER_OVER, encounter_id, from_position)
        return [EncounterOver.from_record(r) for r in records]
