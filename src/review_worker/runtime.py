"""Process-scoped services, built once from the configuration and torn down on exit."""

import logging
from dataclasses import dataclass

from redis.asyncio import Redis

from review_worker.ai.gateway import AIGateway
from review_worker.config import Config, GitHubConfig
from review_worker.github.app import GitHubAppAuth
from review_worker.github.client import GitHubClientFactory
from review_worker.models.settings import AgentExecutionMode
from review_worker.orchestrator.orchestrator import AgentOrchestrator, OrchestratorConfig
from review_worker.pipeline.context import RepoContextBuilder
from review_worker.pipeline.history import ExecutionHistoryStore
from review_worker.pipeline.notify import EventPublisher
from review_worker.pipeline.processor import JobProcessor
from review_worker.pipeline.reply_job import ReplyJobHandler
from review_worker.pipeline.review_job import ReviewJobHandler
from review_worker.queue import JobQueue, create_redis_client
from review_worker.repo_cache.cleanup import CleanupService
from review_worker.repo_cache.lock_manager import LockManager
from review_worker.repo_cache.provisioner import RepoProvisioner

logger = logging.getLogger(__name__)


def create_github_factory(config: GitHubConfig) -> GitHubClientFactory:
    """GitHub client factory for app credentials, or a fixed token otherwise."""
    app_auth = None
    if config.uses_app:
        app_auth = GitHubAppAuth(config.app_id, config.load_private_key(), base_url=config.base_url)
    return GitHubClientFactory(
        app_auth=app_auth,
        token=config.token,
        base_url=config.base_url,
        bot_login=config.bot_login,
    )


@dataclass
class Runtime:
    """Everything a worker process shares between jobs."""

    config: Config
    redis: Redis
    queue: JobQueue
    gateway: AIGateway
    github_factory: GitHubClientFactory
    lock_manager: LockManager
    cleanup_service: CleanupService
    processor: JobProcessor

    @classmethod
    def from_config(cls, config: Config) -> "Runtime":
        redis = create_redis_client(config.redis.url)
        queue = JobQueue(redis, prefix=config.redis.queue_prefix)
        gateway = AIGateway.from_config(config.ai)
        github_factory = create_github_factory(config.github)

        cache_config = config.repo_cache.to_cache_config()
        lock_manager = LockManager(cache_config)
        cleanup_service = CleanupService(lock_manager, cache_config)

        orchestrator = AgentOrchestrator(
            gateway,
            config=OrchestratorConfig(
                max_agent_attempts=config.orchestrator.max_agent_attempts,
                retry_base_delay_seconds=config.orchestrator.retry_base_delay_seconds,
                max_comments=config.orchestrator.max_comments,
                execution_mode=AgentExecutionMode(config.orchestrator.execution_mode),
            ),
        )

        context_builder = None
        if config.worker.repository_context:
            provisioner = RepoProvisioner(lock_manager, cleanup_service, redis=redis, config=cache_config)
            context_builder = RepoContextBuilder(provisioner, gateway)

        events = EventPublisher(redis)
        processor = JobProcessor(
            ReviewJobHandler(
                github_factory,
                gateway,
                orchestrator,
                context_builder=context_builder,
                events=events,
                history_store=ExecutionHistoryStore(redis),
            ),
            ReplyJobHandler(github_factory, gateway, events=events),
            settings_lookup=config.repository_settings,
        )

        return cls(
            config=config,
            redis=redis,
            queue=queue,
            gateway=gateway,
            github_factory=github_factory,
            lock_manager=lock_manager,
            cleanup_service=cleanup_service,
            processor=processor,
        )

    async def aclose(self) -> None:
        """Close network clients."""
        await self.gateway.aclose()
        await self.redis.aclose()
        logger.debug("Runtime closed")
