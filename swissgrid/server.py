"""
WebSocket session server for SwissGrid.

One session per game: the host creates it, authenticates the socket that
plays it and starts the game. Every action goes through the engine and
the new state is pushed at once. When the game is not offline a background
task then brings the remote model up to date and pushes the state again
with the fresh resource snapshot.

Client → server: create, join, auth, reconnect, start, action, reset, get_state
Server → client: created, joined, authenticated, lobby_update, game_started,
                 game_state, game_log, action_error, model_error, game_over, error
"""

import asyncio
import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from functools import partial

import websockets

from swissgrid.game_engine import GameEngine
from swissgrid.grid import model as grid_model
from swissgrid.grid.engine import GridEngine
from swissgrid.grid.rules import RuleBook
from swissgrid.model_client import ModelClient, ModelError
from swissgrid.settings import GameSettings

logger = logging.getLogger(__name__)

SESSION_CODE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no I/O/0/1


def generate_session_code(length=5):
    return "".join(secrets.choice(SESSION_CODE_CHARS) for _ in range(length))


def generate_token():
    return secrets.token_urlsafe(24)


@dataclass
class Player:
    player_id: str
    name: str
    token: str
    websocket: object = None

    @property
    def connected(self):
        return self.websocket is not None


@dataclass
class Session:
    code: str
    game_name: str
    engine: GameEngine
    host_id: str = ""
    players: dict = field(default_factory=dict)        # player_id -> Player
    state: dict = None
    model: ModelClient = None
    fetched_turn: int = None                           # turn of the last model fetch
    sync_task: asyncio.Task = None                     # latest model sync
    resets: int = 0
    created_at: float = field(default_factory=time.time)

    @property
    def started(self):
        return self.state is not None

    def lobby(self):
        return [
            {"player_id": p.player_id, "name": p.name, "connected": p.connected}
            for p in self.players.values()
        ]


class GameServer:
    """
    Owns the sessions and the auth tokens. Rules live in the engine, the
    remote model in each session's ModelClient.
    """

    def __init__(self, settings=None, model_factory=None):
        self.settings = settings or GameSettings()
        self.sessions: dict[str, Session] = {}
        self.tokens: dict[str, tuple[str, str]] = {}    # token -> (session code, player_id)
        self.engines: dict[str, object] = {}            # game name -> engine factory
        self.model_factory = model_factory or ModelClient.from_settings

    def register_engine(self, game_name, engine_factory):
        self.engines[game_name] = engine_factory

    # ── Sessions ─────────────────────────────────────────────────────

    def create_session(self, game_name, host_name):
        """Create a session with its host. Returns (session, host)."""
        factory = self.engines.get(game_name)
        if factory is None:
            raise ValueError(f"Unknown game: {game_name}. Available: {sorted(self.engines)}")

        code = generate_session_code()
        while code in self.sessions:
            code = generate_session_code()

        session = Session(code=code, game_name=game_name, engine=factory())
        host = self._add_player(session, host_name)
        session.host_id = host.player_id
        self.sessions[code] = session
        logger.info("Session %s created (%s)", code, game_name)
        return session, host

    def join_session(self, code, name):
        session = self._get_session(code)
        if session.started:
            raise ValueError("Game already in progress")
        if len(session.players) >= session.engine.player_count_range[1]:
            raise ValueError(f"Session {code} is full")
        return self._add_player(session, name)

    def start_session(self, code, requester_id):
        session = self._get_session(code)
        if requester_id != session.host_id:
            raise ValueError("Only the host can start the game")
        if session.started:
            raise ValueError("Game already started")
        fewest = session.engine.player_count_range[0]
        if len(session.players) < fewest:
            raise ValueError(f"Need at least {fewest} players")

        player_ids = list(session.players)
        names = [session.players[pid].name for pid in player_ids]
        session.state = session.engine.initial_state(player_ids, names)
        return session.state

    async def close_session(self, code):
        session = self.sessions.pop(code, None)
        if session is None:
            return
        for player in session.players.values():
            self.tokens.pop(player.token, None)
        if session.sync_task is not None:
            session.sync_task.cancel()
        if session.model is not None:
            await session.model.close()
        logger.info("Session %s closed", code)

    def _get_session(self, code):
        session = self.sessions.get(code)
        if session is None:
            raise ValueError(f"Session {code} not found")
        return session

    def _add_player(self, session, name):
        player = Player(player_id=f"p_{generate_token()[:8]}", name=name, token=generate_token())
        session.players[player.player_id] = player
        self.tokens[player.token] = (session.code, player.player_id)
        return player

    # ── Connections ──────────────────────────────────────────────────

    async def handle_connection(self, websocket):
        """Serve one WebSocket until it closes."""
        bound = None  # (session code, player_id) once authenticated
        try:
            async for raw in websocket:
                try:
                    msg = json.loads(raw)
                except json.JSONDecodeError:
                    await self._send(websocket, "error", message="Invalid JSON")
                    continue
                if not isinstance(msg, dict):
                    await self._send(websocket, "error", message="Messages must be JSON objects")
                    continue
                bound = await self._route(websocket, msg, bound)
        except websockets.ConnectionClosed:
            logger.debug("Connection closed")
        finally:
            if bound is not None:
                await self._disconnect(websocket, *bound)

    async def _route(self, websocket, msg, bound):
        msg_type = msg.get("type")
        if msg_type == "create":
            await self._on_create(websocket, msg)
        elif msg_type == "join":
            await self._on_join(websocket, msg)
        elif msg_type in ("auth", "reconnect"):
            return await self._on_auth(websocket, msg) or bound
        elif bound is None:
            await self._send(websocket, "error", message="Not authenticated. Send 'auth' first.")
        else:
            code, player_id = bound
            session = self.sessions.get(code)
            if session is None:
                await self._send(websocket, "error", message="Session no longer exists")
            elif msg_type == "start":
                await self._on_start(session, player_id)
            elif msg_type == "action":
                await self.apply(session, player_id, msg.get("action", {}))
            elif msg_type == "reset":
                await self.apply(session, player_id, {"kind": "reset"})
            elif msg_type == "get_state":
                await self._push_state(session, player_id)
            else:
                await self._send(websocket, "error", message=f"Unknown message type: {msg_type}")
        return bound

    async def _on_create(self, websocket, msg):
        try:
            session, host = self.create_session(msg.get("game", "swissgrid"), msg.get("name", "Host"))
        except ValueError as e:
            await self._send(websocket, "error", message=str(e))
            return
        await self._send(websocket, "created", session_code=session.code,
                         player_id=host.player_id, token=host.token, game=session.game_name)

    async def _on_join(self, websocket, msg):
        code = str(msg.get("session_code", "")).upper()
        try:
            player = self.join_session(code, msg.get("name", "Player"))
        except ValueError as e:
            await self._send(websocket, "error", message=str(e))
            return
        await self._send(websocket, "joined", session_code=code,
                         player_id=player.player_id, token=player.token)

    async def _on_auth(self, websocket, msg):
        """Bind this socket to the token's player. Returns (code, player_id) or None."""
        code, player_id = self.tokens.get(msg.get("token"), (None, None))
        session = self.sessions.get(code)
        if session is None or player_id not in session.players:
            await self._send(websocket, "error", message="Invalid token")
            return None

        player = session.players[player_id]
        player.websocket = websocket
        await self._send(websocket, "authenticated", session_code=code, player_id=player_id,
                         name=player.name, is_host=player_id == session.host_id,
                         game_started=session.started)
        await self._broadcast(session, "lobby_update", players=session.lobby(),
                              game_started=session.started)
        if session.started:
            await self._push_state(session, player_id)
        return code, player_id

    async def _disconnect(self, websocket, code, player_id):
        session = self.sessions.get(code)
        player = session.players.get(player_id) if session else None
        # A reconnect may already have bound a newer socket
        if player is None or player.websocket is not websocket:
            return
        player.websocket = None
        await self._broadcast(session, "lobby_update", players=session.lobby(),
                              reason=f"{player.name} disconnected")

    async def _on_start(self, session, player_id):
        try:
            self.start_session(session.code, player_id)
        except ValueError as e:
            await self._tell(session, player_id, "error", message=str(e))
            return
        await self._broadcast(session, "game_started", message="Game has begun!")
        await self.apply(session, player_id, {"kind": "start"})

    # ── Actions ──────────────────────────────────────────────────────

    async def apply(self, session, player_id, action):
        """
        Run one action through the engine and push the outcome. Returns the
        ActionResult. When online, the remote model is synced afterwards in
        the background; wait_for_model awaits it.
        """
        if not session.started:
            await self._tell(session, player_id, "error", message="Game not started")
            return None
        if not isinstance(action, dict):
            await self._tell(session, player_id, "action_error", message="Action must be an object")
            return None

        kind = action.get("kind")
        try:
            result = session.engine.apply_action(session.state, player_id, action)
        except ValueError as e:
            logger.debug("Session %s rejected %s: %s", session.code, kind, e)
            await self._tell(session, player_id, "action_error", message=str(e))
            return None

        session.state = result.new_state
        if kind == "reset":
            session.resets += 1
            self._cancel_sync(session)
            session.fetched_turn = None

        if result.log:
            await self._broadcast(session, "game_log", messages=result.log, success=result.success)
        await self._push_all(session)
        if result.game_over:
            await self._broadcast(session, "game_over", score=session.state["score"])
        elif not session.state["offline"] and kind != "reset":
            self._start_sync(session, apportion=kind == "start")
        return result

    # ── Remote Model ─────────────────────────────────────────────────

    def _start_sync(self, session, apportion=False):
        """Queue a model sync behind the session's previous one."""
        task = asyncio.ensure_future(self._sync_model(session, apportion, session.sync_task))
        task.add_done_callback(partial(self._sync_done, session.code))
        session.sync_task = task

    @staticmethod
    def _sync_done(code, task):
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error("Model sync crashed for session %s", code, exc_info=task.exception())

    def _cancel_sync(self, session):
        if session.sync_task is not None:
            session.sync_task.cancel()
            session.sync_task = None
        if session.model is not None:
            session.model.cancel_pending()

    async def wait_for_model(self, session):
        """Wait until the session's latest model sync has finished."""
        if session.sync_task is not None:
            await asyncio.wait([session.sync_task])

    async def _sync_model(self, session, apportion=False, previous=None):
        """
        Push pending edits and re-fetch the model for the current turn, then
        push the refreshed state. On failure the client is told and the game
        goes on with local values.
        """
        if previous is not None:
            await asyncio.wait([previous])
        resets = session.resets
        state = session.state
        queued, upserts = grid_model.outgoing_edits(state)
        turn = state["turn"]
        if not upserts and session.fetched_turn == turn and not apportion:
            return
        try:
            if session.model is None:
                session.model = self.model_factory(self.settings)
            if session.model.session_id is None:
                await session.model.init()
            rows = await self._exchange(session.model, upserts, turn)
        except ModelError as e:
            logger.warning("Model sync failed for session %s: %s", session.code, e)
            await self._broadcast(session, "model_error", message=str(e), retryable=e.retryable)
            return

        # Rows fetched before a reset are stale. Other actions only copy the
        # state, so the rows go into the current one.
        if session.resets != resets:
            return
        try:
            session.engine.apply_model_fetch(session.state, rows, queued, apportion=apportion)
        except ValueError as e:
            logger.warning("Session %s got malformed model rows: %s", session.code, e)
            await self._broadcast(session, "model_error", message=str(e), retryable=False)
            return
        session.fetched_turn = turn
        await self._push_all(session)

    @staticmethod
    async def _exchange(model, upserts, turn):
        """Queue every upsert and then the fetch; returns the fetched rows."""
        pending = [asyncio.ensure_future(model.upsert_column(*upsert)) for upsert in upserts]
        pending.append(model.fetch_nowait(turn))
        outcomes = await asyncio.gather(*pending, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return outcomes[-1]

    # ── Outgoing Messages ────────────────────────────────────────────

    async def _send(self, websocket, msg_type, **payload):
        try:
            await websocket.send(json.dumps({"type": msg_type, **payload}))
        except websockets.ConnectionClosed:
            logger.debug("Dropped %s for a closed connection", msg_type)

    async def _tell(self, session, player_id, msg_type, **payload):
        player = session.players.get(player_id)
        if player is not None and player.connected:
            await self._send(player.websocket, msg_type, **payload)

    async def _broadcast(self, session, msg_type, **payload):
        for player in session.players.values():
            if player.connected:
                await self._send(player.websocket, msg_type, **payload)

    async def _push_all(self, session):
        for player_id in session.players:
            await self._push_state(session, player_id)

    async def _push_state(self, session, player_id):
        """Send one player its view, the phase and the resource snapshot."""
        player = session.players.get(player_id)
        if player is None or not player.connected or not session.started:
            return
        engine, state = session.engine, session.state
        waiting_for = engine.get_waiting_for(state)
        await self._send(
            player.websocket, "game_state",
            state=engine.get_player_view(state, player_id),
            phase_info=engine.get_phase_info(state),
            resources=state["resources"],
            valid_actions=engine.get_valid_actions(state, player_id),
            waiting_for=waiting_for,
            your_turn=player_id in waiting_for,
        )


# ── Entry Point ──────────────────────────────────────────────────────

def build_server(settings):
    rules = RuleBook.from_json(settings.rules_file) if settings.rules_file else RuleBook.default()
    server = GameServer(settings)
    server.register_engine("swissgrid", partial(GridEngine, rules=rules, settings=settings))
    return server


async def run_server(settings=None):
    settings = settings or GameSettings.from_env()
    server = build_server(settings)

    print(f"SwissGrid server on ws://{settings.host}:{settings.port}")
    print(f"Remote model: {'offline' if settings.offline else settings.model_url}")

    async with websockets.serve(server.handle_connection, settings.host, settings.port):
        print("Server running. Ctrl+C to stop.")
        await asyncio.Future()  # run forever


def main():
    settings = GameSettings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run_server(settings))


if __name__ == "__main__":
    main()
