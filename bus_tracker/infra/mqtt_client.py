# bus_tracker/infra/mqtt_client.py
"""
Клиент MQTT брокера на базе paho-mqtt.

Одно долгоживущее соединение на процесс:
- публикация геолокации в топики bus/location/{driverId} (QoS 1)
- подписка-наблюдатель на bus/# для серверного логирования
- автоматическое переподключение с фиксированной задержкой
"""

from __future__ import annotations

import asyncio
import json
import secrets
import ssl
import threading
from typing import Any, Awaitable, Callable

import paho.mqtt.client as mqtt

from bus_tracker.common.logger import get_logger, log_error, log_info
from bus_tracker.common.constants import TypeMsg
from bus_tracker.shared.errors import BrokerConnectError, RelayError, RelayTimeout

logger = get_logger("mqtt")


# Обработчик входящего сообщения: (topic, payload)
MessageHandler = Callable[[str, str], Awaitable[None]]

ClientFactory = Callable[[str], mqtt.Client]


def make_client_id(prefix: str) -> str:
    """Случайный client ID на каждый запуск процесса, чтобы инстансы не выбивали друг друга."""
    return f"{prefix}_{secrets.token_hex(4)}"


class BrokerConnection:
    """
    Соединение с MQTT брокером.

    Создаётся один раз при старте сервиса и передаётся обработчикам через
    зависимости. Жизненный цикл: connect() → publish()/subscribe() → close().

    paho выполняет сетевой цикл в своём потоке; колбэки переводятся
    в event loop сервиса через call_soon_threadsafe.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        ca_certs: str | None = None,
        client_id_prefix: str = "BusTrackerServer",
        reconnect_interval: float = 1.0,
        keepalive: int = 60,
        connect_timeout: float = 10.0,
        publish_timeout: float = 5.0,
        max_queued_messages: int = 1000,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.client_id = make_client_id(client_id_prefix)
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._ca_certs = ca_certs
        self._reconnect_interval = reconnect_interval
        self._keepalive = keepalive
        self._connect_timeout = connect_timeout
        self._publish_timeout = publish_timeout
        self._max_queued_messages = max_queued_messages
        self._client_factory = client_factory or self._default_client

        self._client: mqtt.Client | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._connack: asyncio.Future[None] | None = None
        # mid → ожидание PUBACK
        self._pending_publishes: dict[int, asyncio.Future[None]] = {}
        self._connected = threading.Event()
        self._closing = False
        self._fatal = False

        self._subscriptions: dict[str, int] = {}
        self._handlers: dict[str, list[MessageHandler]] = {}

        self.last_error: str | None = None
        self.reconnect_count = 0

    @classmethod
    def from_settings(cls, mqtt_settings: Any, client_factory: ClientFactory | None = None) -> BrokerConnection:
        """Создаёт соединение из секции настроек mqtt."""
        return cls(
            host=mqtt_settings.MQTT_HOST,
            port=mqtt_settings.MQTT_PORT,
            username=mqtt_settings.MQTT_USERNAME,
            password=mqtt_settings.MQTT_PASSWORD,
            use_tls=mqtt_settings.MQTT_USE_TLS,
            ca_certs=mqtt_settings.MQTT_CA_CERTS,
            client_id_prefix=mqtt_settings.MQTT_CLIENT_ID_PREFIX,
            reconnect_interval=mqtt_settings.MQTT_RECONNECT_INTERVAL,
            keepalive=mqtt_settings.MQTT_KEEPALIVE,
            connect_timeout=mqtt_settings.MQTT_CONNECT_TIMEOUT,
            publish_timeout=mqtt_settings.MQTT_PUBLISH_TIMEOUT,
            max_queued_messages=mqtt_settings.MQTT_MAX_QUEUED_MESSAGES,
            client_factory=client_factory,
        )

    @staticmethod
    def _default_client(client_id: str) -> mqtt.Client:
        return mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
            protocol=mqtt.MQTTv311,
        )

    @property
    def is_connected(self) -> bool:
        """Есть ли сейчас подтверждённое брокером соединение."""
        return self._client is not None and self._connected.is_set()

    @property
    def subscriptions(self) -> dict[str, int]:
        """Фильтры, на которые клиент подписывается при каждом подключении."""
        return dict(self._subscriptions)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    def _build_client(self) -> mqtt.Client:
        client = self._client_factory(self.client_id)
        if self._username:
            client.username_pw_set(self._username, self._password)
        if self._use_tls:
            client.tls_set(ca_certs=self._ca_certs, cert_reqs=ssl.CERT_REQUIRED)
        client.reconnect_delay_set(
            min_delay=self._reconnect_interval,
            max_delay=self._reconnect_interval,
        )
        client.max_queued_messages_set(self._max_queued_messages)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_publish = self._on_publish
        client.on_message = self._on_message
        return client

    async def connect(self) -> None:
        """
        Подключается к брокеру и ждёт CONNACK.

        Raises:
            BrokerConnectError: неверные учётные данные, ошибка TLS,
                брокер недоступен или не ответил за MQTT_CONNECT_TIMEOUT
        """
        if self.is_connected:
            return

        self._loop = asyncio.get_running_loop()
        self._connack = self._loop.create_future()
        self._closing = False
        self._fatal = False
        self._client = self._build_client()

        await log_info(
            f"Подключение к MQTT {self.host}:{self.port} (tls={self._use_tls}, client_id={self.client_id})...",
            type_msg=TypeMsg.INFO,
        )

        try:
            await asyncio.to_thread(self._client.connect, self.host, self.port, self._keepalive)
        except ssl.SSLError as e:
            await self._drop_client()
            raise BrokerConnectError(f"Ошибка TLS при подключении к MQTT: {e}") from e
        except (OSError, ValueError) as e:
            await self._drop_client()
            raise BrokerConnectError(f"MQTT брокер недоступен: {e}") from e

        self._client.loop_start()

        try:
            await asyncio.wait_for(self._connack, timeout=self._connect_timeout)
        except asyncio.TimeoutError as e:
            await self._drop_client()
            raise BrokerConnectError(
                f"MQTT брокер не ответил за {self._connect_timeout} с"
            ) from e
        except BrokerConnectError:
            await self._drop_client()
            raise

        await log_info(f"MQTT подключён: {self.host}:{self.port}", type_msg=TypeMsg.INFO)

    async def close(self) -> None:
        """Останавливает сетевой цикл и закрывает соединение."""
        if self._client is None:
            return
        self._closing = True
        await self._drop_client()
        await log_info("Соединение с MQTT закрыто", type_msg=TypeMsg.INFO)

    async def _drop_client(self) -> None:
        client, self._client = self._client, None
        self._connected.clear()
        if client is None:
            return
        pending, self._pending_publishes = self._pending_publishes, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(RelayError(detail="соединение с MQTT брокером закрыто"))
        client.disconnect()
        # loop_stop ждёт завершения сетевого потока
        await asyncio.to_thread(client.loop_stop)

    # =========================================================================
    # ПУБЛИКАЦИЯ И ПОДПИСКА
    # =========================================================================

    async def publish(
        self,
        topic: str,
        payload: dict[str, Any] | str | bytes,
        qos: int = 1,
        retain: bool = False,
    ) -> None:
        """
        Публикует сообщение и ждёт его завершения.

        Для QoS 1 завершение означает PUBACK от брокера. Подтверждение
        приходит через on_publish, ожидание не занимает потоков. Повторов нет:
        ошибка возвращается вызывающему.

        Если соединение оборвалось между проверкой и отправкой, paho оставляет
        сообщение в своей очереди (MQTT_ERR_NO_CONN) и отправит его после
        переподключения. Такое сообщение ждёт PUBACK как обычное, чтобы
        повтор не создал дубль.

        Raises:
            RelayError: нет соединения, очередь переполнена, отказ клиента
            RelayTimeout: подтверждение не пришло за MQTT_PUBLISH_TIMEOUT
        """
        if isinstance(payload, dict):
            payload = json.dumps(payload, ensure_ascii=False)

        client = self._client
        # Без соединения paho поставил бы сообщение в очередь до переподключения
        if client is None or not self._connected.is_set() or self._loop is None:
            raise RelayError(detail="нет соединения с MQTT брокером")

        info = client.publish(topic, payload, qos=qos, retain=retain)

        if info.rc == mqtt.MQTT_ERR_QUEUE_SIZE:
            raise RelayError(detail="очередь исходящих сообщений переполнена")
        if info.rc == mqtt.MQTT_ERR_NO_CONN:
            logger.warning(f"Соединение потеряно при публикации в {topic}, сообщение {info.mid} ждёт переподключения")
        elif info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise RelayError(detail=mqtt.error_string(info.rc))

        # on_publish резолвит future через call_soon_threadsafe, то есть не раньше
        # следующей итерации цикла: регистрация ниже всегда успевает
        future = self._loop.create_future()
        self._pending_publishes[info.mid] = future
        try:
            await asyncio.wait_for(future, timeout=self._publish_timeout)
        except asyncio.TimeoutError as e:
            raise RelayTimeout(detail=f"нет подтверждения публикации за {self._publish_timeout} с") from e
        finally:
            self._pending_publishes.pop(info.mid, None)

    async def subscribe(self, topic_filter: str, handler: MessageHandler, qos: int = 1) -> None:
        """
        Регистрирует обработчик для фильтра топиков.

        Подписка выполняется сразу, если соединение есть, и повторяется
        при каждом переподключении.
        """
        self._subscriptions[topic_filter] = qos
        # Копия при записи: сетевой поток paho читает словари без блокировок
        self._handlers[topic_filter] = [*self._handlers.get(topic_filter, []), handler]

        client = self._client
        if client is not None and self._connected.is_set():
            result, _mid = client.subscribe(topic_filter, qos)
            if result != mqtt.MQTT_ERR_SUCCESS:
                await log_error(
                    f"Ошибка подписки на '{topic_filter}': {mqtt.error_string(result)}",
                    logger_name="mqtt",
                )

    async def health_check(self) -> bool:
        """Соединение установлено и брокер не отверг учётные данные."""
        return self.is_connected and not self._fatal

    # =========================================================================
    # КОЛБЭКИ PAHO (сетевой поток)
    # =========================================================================

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        if reason_code.is_failure:
            self._fatal = True
            self.last_error = f"Брокер отклонил подключение: {reason_code}"
            logger.error(self.last_error)
            self._resolve_connack(BrokerConnectError(self.last_error))
            return

        if self._connack is not None and self._connack.done():
            self.reconnect_count += 1
        self._fatal = False
        self.last_error = None
        self._connected.set()
        logger.info(f"MQTT Client Connected ({self.host}:{self.port})")

        for topic_filter, qos in list(self._subscriptions.items()):
            result, _mid = client.subscribe(topic_filter, qos)
            if result == mqtt.MQTT_ERR_SUCCESS:
                logger.info(f"Subscribed to '{topic_filter}'")
            else:
                logger.error(f"Subscription error for '{topic_filter}': {mqtt.error_string(result)}")

        self._resolve_connack(None)

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        self._connected.clear()
        if self._closing:
            return
        self.last_error = f"Соединение потеряно: {reason_code}"
        logger.warning(
            f"MQTT соединение потеряно ({reason_code}), переподключение через {self._reconnect_interval} с"
        )

    def _on_message(self, client: mqtt.Client, userdata: Any, message: mqtt.MQTTMessage) -> None:
        payload = message.payload.decode("utf-8", errors="replace")
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        for topic_filter, handlers in list(self._handlers.items()):
            if not mqtt.topic_matches_sub(topic_filter, message.topic):
                continue
            for handler in handlers:
                asyncio.run_coroutine_threadsafe(self._run_handler(handler, message.topic, payload), loop)

    def _on_publish(self, client: mqtt.Client, userdata: Any, mid: int, reason_code: Any = None, properties: Any = None) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        failed = reason_code is not None and getattr(reason_code, "is_failure", False)
        loop.call_soon_threadsafe(self._resolve_publish, mid, str(reason_code) if failed else None)

    def _resolve_publish(self, mid: int, error: str | None) -> None:
        future = self._pending_publishes.get(mid)
        if future is None or future.done():
            return
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(RelayError(detail=f"брокер отклонил публикацию: {error}"))

    async def _run_handler(self, handler: MessageHandler, topic: str, payload: str) -> None:
        try:
            await handler(topic, payload)
        except Exception as e:
            await log_error(
                f"Ошибка в обработчике MQTT {getattr(handler, '__name__', handler)}: {e}",
                logger_name="mqtt",
                extra={"topic": topic},
                exc_info=True,
            )

    def _resolve_connack(self, error: BrokerConnectError | None) -> None:
        loop, future = self._loop, self._connack
        if loop is None or future is None or loop.is_closed():
            return

        def resolve() -> None:
            if future.done():
                return
            if error is None:
                future.set_result(None)
            else:
                future.set_exception(error)

        loop.call_soon_threadsafe(resolve)
