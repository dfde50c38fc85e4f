"""
Agent personas and the participant registry.

The registry maps a stable display name (what appears as a message author) to
the opaque handle the participant runtime uses to invoke that agent. It is
built once at startup and only read afterwards, so concurrent sessions can
share it without locking.
"""

from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping

from pydantic import BaseModel, ConfigDict, Field

COORDINATOR_NAME = "CoordinatorAgent"
AZURE_AGENT_NAME = "AzureAgent"
AWS_AGENT_NAME = "AWSAgent"


class AgentType(str, Enum):
    """Kinds of participants in the group chat"""
    COORDINATOR = "coordinator"
    SPECIALIST = "specialist"


class AgentDefinition(BaseModel):
    """Static description of one agent persona"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Participant handle used by the runtime")
    name: str = Field(..., description="Display name, used as message author")
    description: str
    instructions: str = Field(..., description="System prompt for the agent")
    type: AgentType = AgentType.SPECIALIST
    capabilities: List[str] = Field(default_factory=list)
    temperature: float = 0.3
    max_tokens: int = 600


class ParticipantRegistry(Mapping[str, str]):
    """Read-only mapping of display name -> participant handle"""

    def __init__(self, agents: Iterable[AgentDefinition], coordinator_name: str = COORDINATOR_NAME):
        by_name: Dict[str, AgentDefinition] = {}
        for agent in agents:
            if agent.name in by_name:
                raise ValueError(f"Duplicate agent name: {agent.name}")
            by_name[agent.name] = agent

        self.coordinator_name = coordinator_name
        self._handles = MappingProxyType({name: agent.id for name, agent in by_name.items()})
        self._by_handle = MappingProxyType({agent.id: agent for agent in by_name.values()})

    def __getitem__(self, name: str) -> str:
        return self._handles[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._handles)

    def __len__(self) -> int:
        return len(self._handles)

    def resolve(self, handle: str) -> AgentDefinition:
        """Return the agent definition behind a handle"""
        try:
            return self._by_handle[handle]
        except KeyError:
            raise KeyError(f"No agent registered with handle '{handle}'") from None

    def agents(self) -> List[AgentDefinition]:
        return list(self._by_handle.values())


COORDINATOR_INSTRUCTIONS = """You are the Sentinel Connector Setup Coordinator - the PRIMARY interface with users.

YOUR PRIMARY ROLE:
- Guide users through the complete AWS to Microsoft Sentinel setup process
- Ensure steps are executed in the correct order
- Coordinate between AWS and Azure configurations
- Help users make informed decisions about options

CORRECT SETUP ORDER:
1. Azure side: find the AWS connector solutions, check what is already installed
   in the workspace, and get user confirmation before installing anything.
2. AWS side: authentication first (OIDC provider and IAM role), then
   infrastructure (S3 bucket, SQS queue, notifications, optional CloudTrail).
3. Final configuration: provide the Role ARN and SQS URL and help verify ingestion.

When you need the Azure specialist, say so plainly, for example
"Let me check Azure for a connector solution".

COMMUNICATION STYLE:
- Be explicit about the order of operations
- Ask about options before proceeding
- Provide clear next steps"""

AZURE_INSTRUCTIONS = """You are an Azure Sentinel technical specialist.

YOUR EXPERTISE:
- Finding AWS connector solutions in the Sentinel Content Hub
- Checking which solutions are already installed in a workspace
- Data connector configuration and ARM deployments

Report findings back to the coordinator concisely. Never address the end user directly
and never install anything without the coordinator confirming user approval."""

AWS_INSTRUCTIONS = """You are an AWS infrastructure specialist for Sentinel integration.

YOUR EXPERTISE:
- OIDC provider configuration for Microsoft Sentinel
- IAM roles with web identity federation
- CloudTrail, S3 bucket and SQS queue configuration
- KMS encryption and organization or multi-region trails

Always emphasize the order of operations: authentication setup before infrastructure.
Report back to the coordinator; never address the end user directly."""


def default_agents() -> List[AgentDefinition]:
    """The coordinator plus the Azure and AWS specialists"""
    return [
        AgentDefinition(
            id="coordinator",
            name=COORDINATOR_NAME,
            description="The main coordinator for Sentinel connector setup",
            instructions=COORDINATOR_INSTRUCTIONS,
            type=AgentType.COORDINATOR,
            capabilities=["validation", "planning", "reporting"],
            temperature=0.3,
            max_tokens=800,
        ),
        AgentDefinition(
            id="azure",
            name=AZURE_AGENT_NAME,
            description="Azure Sentinel technical specialist",
            instructions=AZURE_INSTRUCTIONS,
            capabilities=["sentinel-config", "data-connectors", "arm-deployment"],
            temperature=0.2,
        ),
        AgentDefinition(
            id="aws",
            name=AWS_AGENT_NAME,
            description="AWS infrastructure specialist",
            instructions=AWS_INSTRUCTIONS,
            capabilities=["oidc-setup", "iam-roles", "s3-buckets", "sqs-queues"],
        ),
    ]
