"""
Explicit construction of the instance monitor, chat backends and title
generator, exposed as FastAPI dependencies.

Credentials come from ``settings`` here and are handed to each adapter at
construction time.
"""
from functools import lru_cache

import httpx

from ec2chat.backends import CloudBackend, LocalBackend
from ec2chat.config import settings
from ec2chat.instance import InstanceMonitor, StatusPoller, build_ec2_client
from ec2chat.models import Provider
from ec2chat.relay import ChatRelay
from ec2chat.titles import TitleGenerator


@lru_cache
def get_monitor() -> InstanceMonitor:
    ec2 = build_ec2_client(
        region_name=settings.aws_region,
        aws_access_key_id=settings.my_aws_access_key,
        aws_secret_access_key=settings.my_aws_secret_key,
    )
    return InstanceMonitor(
        ec2,
        instance_id=settings.ec2_instance_id,
        admin_password=settings.admin_password,
    )


@lru_cache
def get_poller() -> StatusPoller:
    return StatusPoller(get_monitor(), interval=settings.poll_interval_seconds)


@lru_cache
def get_http_client() -> httpx.AsyncClient:
    timeout = httpx.Timeout(10.0, read=settings.local_timeout_seconds)
    return httpx.AsyncClient(timeout=timeout)


@lru_cache
def get_relay() -> ChatRelay:
    return ChatRelay({
        Provider.LOCAL: LocalBackend(
            get_monitor(),
            get_http_client(),
            model=settings.ollama_model,
            port=settings.ollama_port,
        ),
        Provider.CLOUD: CloudBackend(
            api_key=settings.hf_token,
            model=settings.cloud_model,
            base_url=settings.cloud_base_url,
        ),
    })


@lru_cache
def get_title_generator() -> TitleGenerator:
    return TitleGenerator(get_relay())


async def close_clients():
    """Release pooled connections on shutdown."""
    if get_http_client.cache_info().currsize:
        await get_http_client().aclose()
    get_title_generator.cache_clear()
    get_relay.cache_clear()
    get_http_client.cache_clear()
