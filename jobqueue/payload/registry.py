"""
Payload registry.

Maps a stored discriminator plus encoded arguments to a runnable handler,
and back. Every handler type, entity kind and named target a worker can
decode must be registered at process startup; nothing is imported
dynamically from stored data.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import JOB_NAME_PREVIEW_LENGTH
from jobqueue.db.models import Job
from jobqueue.errors import DeserializationError, SerializationError
from jobqueue.payload.adhoc import AdhocInstruction
from jobqueue.payload.base import PayloadObject, is_performable
from jobqueue.payload.performable_method import PerformableMethod
from jobqueue.types.job import JobPayload

logger = logging.getLogger(__name__)

METHOD_JOB_TYPE = "method"
ADHOC_JOB_TYPE = "adhoc"

REF_KEY = "$ref"
TARGET_KEY = "$target"

# Type aliases for codec and entity callables
Encoder = Callable[[Any], dict[str, Any]]
Decoder = Callable[[dict[str, Any], AsyncSession | None], Awaitable[Any]]
Describer = Callable[[dict[str, Any]], str]
EntityLoader = Callable[[AsyncSession | None, str], Awaitable[Any]]
EntityIdentifier = Callable[[Any], Any]


@dataclass
class _Codec:
    job_type: str
    cls: type
    encode: Encoder
    decode: Decoder
    describe: Describer


@dataclass
class _EntityKind:
    kind: str
    cls: type
    load: EntityLoader
    identify: EntityIdentifier


class PayloadRegistry:
    """
    Registry of payload codecs, entity kinds and named targets.

    Built-in codecs:
    - "method": PerformableMethod, entity/target references resolved on decode
    - "adhoc": AdhocInstruction, for operator tooling only
    """

    def __init__(self, max_payload_bytes: int | None = None):
        """
        Initialize the registry.

        Args:
            max_payload_bytes: Ceiling for encoded payloads. Read from
                settings at encode time when not given.
        """
        self.max_payload_bytes = max_payload_bytes
        self._codecs: dict[str, _Codec] = {}
        self._types: dict[type, str] = {}
        self._entities: dict[str, _EntityKind] = {}
        self._targets: dict[str, Any] = {}

        self.register_codec(
            METHOD_JOB_TYPE,
            PerformableMethod,
            encode=self._encode_method,
            decode=self._decode_method,
            describe=self._describe_method,
        )
        self.register_codec(
            ADHOC_JOB_TYPE,
            AdhocInstruction,
            encode=lambda handler: {"source": handler.source},
            decode=self._decode_adhoc,
            describe=lambda data: AdhocInstruction(data["source"]).display_name,
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_codec(
        self,
        job_type: str,
        cls: type,
        encode: Encoder,
        decode: Decoder,
        describe: Describer,
    ) -> None:
        """
        Register how one handler type is stored and restored.

        Raises:
            ValueError: If the discriminator is already taken by another type.
        """
        existing = self._codecs.get(job_type)
        if existing is not None and existing.cls is not cls:
            raise ValueError(
                f"Job type {job_type!r} is already registered to {existing.cls.__name__}"
            )
        self._codecs[job_type] = _Codec(job_type, cls, encode, decode, describe)
        self._types[cls] = job_type
        logger.debug(f"Registered payload codec for job type: {job_type}")

    def register(self, job_type: str) -> Callable[[type[PayloadObject]], type[PayloadObject]]:
        """
        Decorator to register a PayloadObject subclass as a direct handler.

        Args:
            job_type: The discriminator stored with the job.

        Returns:
            Decorator function.

        Example:
            @registry.register("send_email")
            class SendEmail(PayloadObject):
                to: str

                async def perform(self) -> None:
                    ...
        """
        def decorator(cls: type[PayloadObject]) -> type[PayloadObject]:
            if not issubclass(cls, PayloadObject):
                raise TypeError(f"{cls.__name__} must subclass PayloadObject")

            async def decode(data: dict[str, Any], session: AsyncSession | None) -> PayloadObject:
                return cls.model_validate(data)

            self.register_codec(
                job_type,
                cls,
                encode=lambda handler: handler.model_dump(mode="json"),
                decode=decode,
                describe=lambda data: cls.model_validate(data).display_name,
            )
            return cls
        return decorator

    def register_entity(
        self,
        kind: str,
        cls: type,
        load: EntityLoader | None = None,
        identify: EntityIdentifier | None = None,
    ) -> None:
        """
        Register a kind of stored entity that can be referenced by "kind:id".

        Args:
            kind: Stable name used in reference tokens.
            cls: Entity class; instances of it are stored as references.
            load: Async loader (session, id) -> entity or None. Defaults to
                AsyncSession.get for SQLAlchemy mapped classes.
            identify: Returns an instance's id, or None if it is unsaved.
                Defaults to the ``id`` attribute.
        """
        if ":" in kind:
            raise ValueError("Entity kind may not contain ':'")

        async def default_load(session: AsyncSession | None, ident: str) -> Any:
            if session is None:
                raise DeserializationError(
                    f"Loading {kind}:{ident} needs a database session"
                )
            return await session.get(cls, int(ident) if ident.isdigit() else ident)

        self._entities[kind] = _EntityKind(
            kind=kind,
            cls=cls,
            load=load or default_load,
            identify=identify or (lambda obj: getattr(obj, "id", None)),
        )

    def register_target(self, name: str, target: Any) -> Any:
        """
        Register a named, process-wide target (class, module or service).

        Returns the target so it can be used as a class decorator via
        ``registry.target("Name")``.
        """
        self._targets[name] = target
        return target

    def target(self, name: str) -> Callable[[Any], Any]:
        """Decorator form of register_target."""
        def decorator(obj: Any) -> Any:
            return self.register_target(name, obj)
        return decorator

    @property
    def targets(self) -> dict[str, Any]:
        return dict(self._targets)

    def list_handlers(self) -> list[str]:
        """List all registered job types."""
        return list(self._codecs.keys())

    def get_handler_type(self, job_type: str) -> type | None:
        """Get the class registered for a job type."""
        codec = self._codecs.get(job_type)
        return codec.cls if codec else None

    def job_type_of(self, handler: Any) -> str | None:
        """Get the discriminator a handler is stored under."""
        return self._types.get(type(handler))

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, handler: Any) -> str:
        """
        Encode a handler for storage.

        Args:
            handler: A performable object of a registered type.

        Returns:
            The encoded payload text.

        Raises:
            TypeError: If the handler cannot be performed.
            SerializationError: If its type is unregistered, an argument
                cannot be stored, or the result reaches the size ceiling.
        """
        if not is_performable(handler):
            raise TypeError("Cannot enqueue items which do not respond to perform")

        job_type = self._types.get(type(handler))
        if job_type is None:
            raise SerializationError(
                f"{type(handler).__name__} is not a registered payload type"
            )

        data = self._codecs[job_type].encode(handler)
        try:
            text = JobPayload(job_type=job_type, data=data).model_dump_json()
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Job payload could not be encoded: {e}") from e

        size = len(text.encode("utf-8"))
        ceiling = self._payload_ceiling()
        if size >= ceiling:
            raise SerializationError(
                f"Encoded job is {size} bytes; payloads must be smaller than {ceiling} bytes"
            )
        return text

    def _payload_ceiling(self) -> int:
        if self.max_payload_bytes is not None:
            return self.max_payload_bytes
        from jobqueue.config import get_settings

        return get_settings().max_payload_bytes

    def _encode_value(self, value: Any) -> Any:
        for name, target in self._targets.items():
            if value is target:
                return {TARGET_KEY: name}

        for entity in self._entities.values():
            if isinstance(value, entity.cls):
                ident = entity.identify(value)
                if ident is None:
                    raise SerializationError(
                        f"Cannot reference an unsaved {entity.kind}"
                    )
                return {REF_KEY: f"{entity.kind}:{ident}"}

        if isinstance(value, (list, tuple)):
            return [self._encode_value(v) for v in value]
        if isinstance(value, dict):
            return {str(k): self._encode_value(v) for k, v in value.items()}
        if value is None or isinstance(value, (str, int, float, bool)):
            return value

        raise SerializationError(
            f"Cannot store argument of type {type(value).__name__}; "
            f"register it as an entity or target"
        )

    def _encode_method(self, handler: PerformableMethod) -> dict[str, Any]:
        target = self._encode_value(handler.target)
        if not isinstance(target, dict):
            raise SerializationError(
                f"{handler.display_name}: target must be a registered entity or named target"
            )
        return {
            "target": target,
            "method": handler.method,
            "args": self._encode_value(handler.args),
        }

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    async def decode(self, text: str, session: AsyncSession | None = None) -> Any:
        """
        Restore a handler from its stored form.

        Args:
            text: The encoded payload.
            session: Session used to load referenced entities.

        Returns:
            A performable handler.

        Raises:
            DeserializationError: If the payload is malformed, its type is
                unknown, or a reference cannot be resolved.
        """
        payload = self._parse(text)
        codec = self._codecs.get(payload.job_type)
        if codec is None:
            raise DeserializationError(
                f"Job failed to load: unknown job type {payload.job_type!r}"
            )

        try:
            return await codec.decode(payload.data, session)
        except DeserializationError:
            raise
        except (ValidationError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise DeserializationError(f"Job failed to load: {e}") from e

    def _parse(self, text: str) -> JobPayload:
        try:
            return JobPayload.model_validate_json(text)
        except ValidationError as e:
            raise DeserializationError(f"Job failed to load: malformed payload ({e.error_count()} errors)") from e

    async def _resolve_value(self, value: Any, session: AsyncSession | None) -> Any:
        if isinstance(value, dict):
            if set(value) == {TARGET_KEY}:
                name = value[TARGET_KEY]
                if name not in self._targets:
                    raise DeserializationError(f"Job failed to load: unknown target {name!r}")
                return self._targets[name]
            if set(value) == {REF_KEY}:
                return await self._load_ref(value[REF_KEY], session)
            return {k: await self._resolve_value(v, session) for k, v in value.items()}
        if isinstance(value, list):
            return [await self._resolve_value(v, session) for v in value]
        return value

    async def _load_ref(self, token: str, session: AsyncSession | None) -> Any:
        kind, _, ident = token.partition(":")
        entity = self._entities.get(kind)
        if entity is None or not ident:
            raise DeserializationError(f"Job failed to load: unknown reference {token!r}")

        obj = await entity.load(session, ident)
        if obj is None:
            raise DeserializationError(f"Job failed to load: {token} no longer exists")
        return obj

    async def _decode_method(
        self,
        data: dict[str, Any],
        session: AsyncSession | None,
    ) -> PerformableMethod:
        target = await self._resolve_value(data["target"], session)
        args = await self._resolve_value(data.get("args", []), session)
        return PerformableMethod(target, data["method"], args, name=self._describe_method(data))

    async def _decode_adhoc(
        self,
        data: dict[str, Any],
        session: AsyncSession | None,
    ) -> AdhocInstruction:
        return AdhocInstruction(data["source"], namespace=self._targets)

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def _describe_method(self, data: dict[str, Any]) -> str:
        target = data["target"]
        if TARGET_KEY in target:
            return f"{target[TARGET_KEY]}.{data['method']}"
        kind = target[REF_KEY].partition(":")[0]
        return f"{kind}#{data['method']}"

    def describe(self, job: Job) -> str:
        """
        Short name of a job for log lines, computed without a session.

        Falls back to the job id and the start of the stored text when the
        payload cannot be named.
        """
        try:
            payload = JobPayload.model_validate_json(job.handler)
            codec = self._codecs[payload.job_type]
            return codec.describe(payload.data)
        except (ValidationError, KeyError, TypeError, ValueError):
            text = " ".join(job.handler.split())
            if len(text) > JOB_NAME_PREVIEW_LENGTH:
                text = f"{text[:JOB_NAME_PREVIEW_LENGTH]}..."
            return f"{job.id} ({text})"


# Process-wide registry used by producers and workers by default
default_registry = PayloadRegistry()


def register_handler(job_type: str) -> Callable[[type[PayloadObject]], type[PayloadObject]]:
    """Register a direct handler with the default registry."""
    return default_registry.register(job_type)


def get_handler(job_type: str) -> type | None:
    """Get the class registered for a job type in the default registry."""
    return default_registry.get_handler_type(job_type)


def list_handlers() -> list[str]:
    """List all job types known to the default registry."""
    return default_registry.list_handlers()
