"""
Receiver emulator.

Advertises this host as a receiver and serves the handshake endpoints so
that a controller app can hand us a credential. State machine:
Idle -> Publishing -> Idle.
"""

import asyncio
import contextlib
import logging
import socket
import time

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import (
    ADVERTISED_PATH,
    ADVERTISED_VERSION,
    BRAND_DISPLAY_NAME,
    EMULATOR_HOST,
    EMULATOR_PORT_ATTEMPTS,
    EMULATOR_PORT_START,
    LIBRARY_VERSION,
    MODEL_DISPLAY_NAME,
    PROTOCOL_VERSION,
)
from discovery.identity import IdentityService
from errors import AlreadyPublishing, IntegrityError, KeyAgreementError, MalformedRecord
from handshake.models import (
    STATUS_OK_STRING,
    CapturedCredential,
    CaptureSession,
    DecodedAuth,
    DeviceInfo,
    EmulatorState,
    ProtocolStatus,
    StatusResponse,
)
from security.crypto import decrypt_credential
from security.dh import EphemeralKeyPair, generate_keypair
from storage.credentials import CredentialVault

logger = logging.getLogger(__name__)


class _ResponderServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the host app."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class ReceiverEmulator:
    """Impersonates a receiver and captures submitted credentials."""

    def __init__(
        self,
        identity: IdentityService,
        vault: CredentialVault,
        advertiser,
        host: str = EMULATOR_HOST,
        port_start: int = EMULATOR_PORT_START,
        port_attempts: int = EMULATOR_PORT_ATTEMPTS,
    ) -> None:
        self._identity = identity
        self._vault = vault
        self._advertiser = advertiser  # advertise(name, port, attributes) / withdraw()
        self._host = host
        self._port_start = port_start
        self._port_attempts = port_attempts

        self.state = EmulatorState.IDLE
        self._keypair: EphemeralKeyPair | None = None
        self._display_name = ""
        self._port = 0
        self._server: _ResponderServer | None = None
        self._serve_task: asyncio.Task | None = None
        self._capture_callbacks: list = []  # async fn(credential)

        self.app = self._create_app()

    @property
    def port(self) -> int:
        return self._port

    @property
    def public_key(self) -> str:
        return self._keypair.public_key_b64 if self._keypair else ""

    def on_capture(self, callback) -> None:
        """Register callback: async fn(credential: CapturedCredential)."""
        self._capture_callbacks.append(callback)

    async def _emit(self, credential: CapturedCredential) -> None:
        for cb in self._capture_callbacks:
            try:
                await cb(credential)
            except Exception as e:
                logger.error(f"Capture callback error: {e}")

    # --- Lifecycle ---

    async def start(self, name: str) -> CaptureSession:
        """Generate a session key pair, bind the responder and advertise."""
        if self.state is EmulatorState.PUBLISHING:
            raise AlreadyPublishing(f"Already publishing as {self._display_name!r}")

        logger.info(f"Starting receiver emulation as {name!r}")
        self.state = EmulatorState.PUBLISHING
        self._keypair = generate_keypair()
        self._display_name = name

        try:
            self._port = await self._start_responder()
            await self._advertiser.advertise(
                name,
                self._port,
                {"CPath": ADVERTISED_PATH, "VERSION": ADVERTISED_VERSION},
            )
        except BaseException:
            await self._stop_responder()
            self._reset()
            raise

        logger.info(f"Receiver emulation started on port {self._port}")
        return CaptureSession(port=self._port, identity=self._identity.device_id)

    async def stop(self) -> None:
        """Withdraw the advertisement and close the responder."""
        if self.state is EmulatorState.IDLE:
            return
        try:
            await self._advertiser.withdraw()
        finally:
            await self._stop_responder()
            self._reset()
        logger.info("Receiver emulation stopped")

    def _reset(self) -> None:
        self.state = EmulatorState.IDLE
        self._keypair = None
        self._port = 0

    def _bind_socket(self) -> socket.socket:
        """Bind to the first free port at or above the configured start."""
        for port in range(self._port_start, self._port_start + self._port_attempts):
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind((self._host, port))
                return sock
            except OSError:
                sock.close()

        raise OSError(
            f"Could not bind to any port in {self._port_start}-"
            f"{self._port_start + self._port_attempts - 1}"
        )

    async def _start_responder(self) -> int:
        sock = self._bind_socket()
        port = sock.getsockname()[1]

        config = uvicorn.Config(self.app, log_level="warning", lifespan="off")
        self._server = _ResponderServer(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._serve_task.done():
                self._serve_task.result()
                raise OSError(f"Responder exited during startup on port {port}")
            await asyncio.sleep(0.01)

        logger.info(f"Handshake responder listening on port {port}")
        return port

    async def _stop_responder(self) -> None:
        if self._server:
            self._server.should_exit = True
        if self._serve_task:
            try:
                await self._serve_task
            except Exception as e:
                logger.warning(f"Responder shut down with error: {e}")
        self._server = None
        self._serve_task = None

    # --- Handshake endpoints ---

    def device_info(self) -> DeviceInfo:
        device_id = self._identity.device_id
        return DeviceInfo(
            status=ProtocolStatus.OK,
            statusString=STATUS_OK_STRING,
            spotifyError=0,
            version=PROTOCOL_VERSION,
            deviceID=device_id,
            remoteName=self._display_name,
            activeUser="",
            publicKey=self.public_key,
            deviceType="SPEAKER",
            libraryVersion=LIBRARY_VERSION,
            accountReq="PREMIUM",
            brandDisplayName=BRAND_DISPLAY_NAME,
            modelDisplayName=MODEL_DISPLAY_NAME,
            resolverVersion="1",
            groupStatus="NONE",
            tokenType="default",
            clientID=device_id,
            productID=0,
            scope="streaming,client-authorization-universal",
            availability="",
            supported_drm_media_formats=[],
            supported_capabilities=1,
            aliases=[],
        )

    async def capture(self, user_name: str, blob: str, client_key: str) -> CapturedCredential:
        """
        Decrypt and store a submitted credential.

        The raw submission is stored even when decryption fails, with
        ``decoded`` left empty.
        """
        logger.info(
            f"Received credentials for user: {user_name} "
            f"(blob: {len(blob)} chars, clientKey: {len(client_key)} chars)"
        )

        decoded = None
        if blob and client_key and self._keypair:
            try:
                record = decrypt_credential(
                    self._keypair.private_key,
                    blob,
                    client_key,
                    user_name,
                    self._identity.device_id,
                )
                decoded = DecodedAuth(auth_type=record.auth_type, auth_data=record.auth_data)
                logger.info(f"Credentials decrypted: auth type {record.auth_type}")
            except (IntegrityError, MalformedRecord, KeyAgreementError) as e:
                logger.error(f"Failed to decrypt credentials: {e}")

        credential = CapturedCredential(
            user_name=user_name,
            raw_blob=blob,
            raw_client_key=client_key,
            decoded=decoded,
            captured_at=time.time(),
            capturing_identity=self._identity.device_id,
        )
        try:
            self._vault.save(credential)
        except OSError as e:
            logger.error(f"Captured credential could not be persisted: {e}")

        await self._emit(credential)
        return credential

    def _create_app(self) -> FastAPI:
        app = FastAPI(title="Handshake responder", docs_url=None, redoc_url=None, openapi_url=None)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @app.api_route(ADVERTISED_PATH, methods=["GET", "POST"])
        async def handshake(request: Request):
            action = request.query_params.get("action")
            form = {}
            if request.method == "POST":
                form = await request.form()
                action = form.get("action") or action

            logger.info(f"Handshake request: {request.method} action={action}")

            if action == "getInfo":
                return JSONResponse(self.device_info().model_dump())

            if request.method == "POST" and action == "addUser":
                await self.capture(
                    str(form.get("userName") or ""),
                    str(form.get("blob") or ""),
                    str(form.get("clientKey") or ""),
                )
                ack = StatusResponse(status=ProtocolStatus.OK, statusString=STATUS_OK_STRING)
                return JSONResponse(ack.model_dump())

            logger.info(f"Unknown handshake action: {action}")
            error = StatusResponse(status=ProtocolStatus.UNKNOWN, statusString="Unknown action")
            return JSONResponse(error.model_dump(), status_code=404)

        return app
