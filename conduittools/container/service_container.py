# Standard Library
from dataclasses import dataclass
from typing import Optional, Callable
import traceback
import getpass
import sys
import asyncio

# Third Party
from loguru import logger

# Local
from ..configuration.configuration import AgentNodeConfig, RuntimeConfig, get_agent_config
from ..configuration.constants import DEFAULT_OPENROUTER_MODEL, DEFAULT_OPEN_AI_MODEL, OPENROUTER_BASE_URL
from ..ai.verification_oracle import LLMVerificationOracle, LengthHeuristicOracle
from ..protocols.verification_oracle import VerificationOracle
from ..utilities.credentials import CredentialManager
from ..utilities.db_manager import DBConnectionManager
from ..utilities.escrow_vault import EscrowVault
from ..utilities.key_rotation import CredentialRotator
from ..utilities.ledger import PaymentLedger
from ..utilities.mirror_repository import MirrorRepository
from ..utilities.payment_orchestrator import PaymentOrchestrator
from ..utilities.reconciler import LedgerReconciler
from ..utilities.verifier_agent import VerifierAgent

@dataclass
class ServiceContainer:
    """Container for conduit agent node service initialization and management"""
    node_config: AgentNodeConfig
    runtime_config: RuntimeConfig
    db_connection_manager: DBConnectionManager
    mirror: MirrorRepository
    ledger: PaymentLedger
    orchestrator: PaymentOrchestrator
    reconciler: LedgerReconciler
    verifier_agent: VerifierAgent
    credential_manager: Optional[CredentialManager] = None

    @classmethod
    def initialize(
        cls,
        node_config: Optional[AgentNodeConfig] = None,
        runtime_config: Optional[RuntimeConfig] = None,
        ledger: Optional[PaymentLedger] = None,
        password_prompt: Optional[Callable[[str], str]] = None,
        credential_manager: Optional[CredentialManager] = None
    ) -> 'ServiceContainer':
        """
        Initialize all agent node services

        Args:
            node_config: Agent node configuration (defaults to the config file in CONFIG_DIR)
            runtime_config: Runtime flags (defaults to RuntimeConfig())
            ledger: Ledger to serve; a fresh in-process ledger is created if omitted
            password_prompt: Optional function to get password (defaults to getpass.getpass)
            credential_manager: Pre-authenticated credential store, skips the password prompt
        """
        password_prompt = password_prompt or getpass.getpass
        runtime_config = runtime_config or RuntimeConfig()

        try:
            node_config = node_config or get_agent_config()
            needs_credentials = not node_config.mirror_url or not runtime_config.USE_HEURISTIC_ORACLE

            # Startup phase
            if credential_manager is None and needs_credentials:
                while True:
                    try:
                        password = password_prompt("Enter your password: ")
                        credential_manager = CredentialManager(password=password)
                        break
                    except ValueError:
                        print("Invalid password. Please try again.")

        except KeyboardInterrupt:
            print("\nStartup cancelled")
            sys.exit(0)
        except Exception as e:
            logger.error(f"ServiceContainer.initialize: Error initializing services: {e}")
            logger.error(traceback.format_exc())
            raise

        try:
            if node_config.mirror_url:
                db_connection_manager = DBConnectionManager(url=node_config.mirror_url)
                mirror = MirrorRepository(db_manager=db_connection_manager)
            else:
                db_connection_manager = DBConnectionManager(credential_manager=credential_manager)
                mirror = MirrorRepository(
                    db_manager=db_connection_manager,
                    credential_key=node_config.mirror_credential_key
                )

            ledger = ledger or PaymentLedger(vault=EscrowVault(), config=node_config.ledger_config())
            oracle = cls.build_oracle(node_config, runtime_config, credential_manager)

            orchestrator = PaymentOrchestrator(ledger=ledger, mirror=mirror)
            reconciler = LedgerReconciler(
                ledger=ledger,
                mirror=mirror,
                config=node_config.reconciler_config()
            )
            verifier_agent = VerifierAgent(
                ledger=ledger,
                mirror=mirror,
                oracle=oracle,
                config=node_config.verifier_agent_config()
            )

            logger.info(f"ServiceContainer.initialize: All services initialized for node {node_config.node_name}")

            return cls(
                node_config=node_config,
                runtime_config=runtime_config,
                db_connection_manager=db_connection_manager,
                mirror=mirror,
                ledger=ledger,
                orchestrator=orchestrator,
                reconciler=reconciler,
                verifier_agent=verifier_agent,
                credential_manager=credential_manager
            )

        except Exception as e:
            logger.error(f"ServiceContainer.initialize: Error initializing services: {e}")
            logger.error(traceback.format_exc())
            raise

    @staticmethod
    def build_oracle(
        node_config: AgentNodeConfig,
        runtime_config: RuntimeConfig,
        credential_manager: Optional[CredentialManager]
    ) -> VerificationOracle:
        """LLM oracle over the stored API keys, or the length heuristic when none are usable"""
        if runtime_config.USE_HEURISTIC_ORACLE or credential_manager is None:
            logger.warning("ServiceContainer.build_oracle: Using length heuristic oracle")
            return LengthHeuristicOracle()

        if not credential_manager.list_credentials(prefix=node_config.oracle_key_prefix):
            logger.warning(
                f"ServiceContainer.build_oracle: No credentials with prefix {node_config.oracle_key_prefix}; "
                f"falling back to length heuristic oracle"
            )
            return LengthHeuristicOracle()

        rotator = CredentialRotator.from_credentials(credential_manager, node_config.oracle_key_prefix)

        if runtime_config.USE_OPENROUTER:
            return LLMVerificationOracle(rotator=rotator, model=node_config.oracle_model, base_url=OPENROUTER_BASE_URL)

        # OpenAI proper does not understand OpenRouter model names
        model = node_config.oracle_model
        if model == DEFAULT_OPENROUTER_MODEL:
            model = DEFAULT_OPEN_AI_MODEL
        return LLMVerificationOracle(rotator=rotator, model=model, base_url=None)

    @property
    def running(self) -> bool:
        tasks = [self.reconciler.monitor_task, self.verifier_agent.monitor_task]
        return any(task is not None and not task.done() for task in tasks)

    async def run(self):
        """Run the reconciler and verifier agent until cancelled"""
        reconciler_task = self.reconciler.start()
        verifier_task = self.verifier_agent.start()
        try:
            await asyncio.gather(reconciler_task, verifier_task)
        finally:
            self.stop()

    def stop(self):
        self.reconciler.stop()
        self.verifier_agent.stop()
        self.db_connection_manager.close()
        logger.info("ServiceContainer.stop: Services stopped")
