from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter (LLM for planning and synthesis)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "anthropic/claude-sonnet-4.5"
    openrouter_model: str = ""
    planner_model: str = ""  # optional override for plan generation only

    # Search provider
    search_provider: str = "perplexity"  # perplexity | tavily
    perplexity_api_key: str = ""
    perplexity_base_url: str = "https://api.perplexity.ai"
    tavily_api_key: str = ""
    search_timeout_seconds: float = 60.0
    search_max_results: int = 8

    # Research pipeline limits
    research_max_rounds: int = 2
    research_max_queries_per_round: int = 5
    research_max_total_cost: float = 0.5
    research_parallel_searches: int = 3
    research_timeout_ms: int = 120000
    research_fast_path_enabled: bool = True
    research_charge_failed_searches: bool = False
    research_min_query_length: int = 20
    research_max_query_length: int = 2000

    # Pricing (USD)
    search_cost_standard: float = 0.005
    search_cost_pro: float = 0.02
    llm_input_cost_per_1k: float = 0.003
    llm_output_cost_per_1k: float = 0.015

    # Streaming
    stream_delay_ms: int = 0

    # Supabase persistence
    supabase_url: str = ""
    supabase_anon_key: str = ""
    persist_sessions: bool = False

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def search_api_key(self) -> str:
        provider = self.search_provider.lower().strip()
        if provider == "tavily":
            return self.tavily_api_key
        return self.perplexity_api_key

    @property
    def persistence_enabled(self) -> bool:
        return bool(self.persist_sessions and self.supabase_url and self.supabase_anon_key)


settings = Settings()
