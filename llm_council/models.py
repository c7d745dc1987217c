"""Pure dataclasses for the council and roundtable pipelines. No logic, no deps."""

from dataclasses import dataclass, field


@dataclass
class ModelResponse:
    provider: str          # "openai", "anthropic", "google", "xai", "openrouter"
    model: str             # model id as requested by the caller
    content: str
    latency_sec: float
    token_count: int | None = None


@dataclass
class ParticipantConfig:
    model: str
    system_prompt: str | None = None


@dataclass
class StageOneResult:
    model: str
    response: str


@dataclass
class StageTwoResult:
    model: str
    ranking: str                 # raw evaluation text
    parsed_ranking: list[str] = field(default_factory=list)


@dataclass
class AggregateRanking:
    model: str
    average_rank: float
    rankings_count: int


@dataclass
class StageThreeResult:
    model: str                   # chairman, or "error" for the synthetic result
    response: str


@dataclass
class CouncilResult:
    query: str
    stage1: list[StageOneResult]
    stage2: list[StageTwoResult]
    stage3: StageThreeResult
    label_to_model: dict[str, str] = field(default_factory=dict)
    aggregate_rankings: list[AggregateRanking] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return not self.stage1


@dataclass
class CouncilEvent:
    type: str                    # stage1_start ... complete, error, title_complete
    data: object = None
    label_to_model: dict[str, str] | None = None
    aggregate_rankings: list[AggregateRanking] | None = None
    message: str | None = None


@dataclass
class RoundtableTurn:
    id: str
    model_id: str
    model_name: str
    content: str
    timestamp: str               # ISO-8601
    is_intervention: bool = False


@dataclass
class RoundtableEvent:
    type: str                    # roundtable_start, turn_start, turn_complete, turn_error, roundtable_complete
    model_id: str | None = None
    model_name: str | None = None
    turn: RoundtableTurn | None = None
    turns: list[RoundtableTurn] | None = None
    message: str | None = None
