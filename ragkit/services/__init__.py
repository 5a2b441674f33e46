"""Services that orchestrate the retrieval and assembly stages."""

from ragkit.services.search_pipeline import SearchPipeline, generate_cache_key, merge_results

__all__ = ["SearchPipeline", "generate_cache_key", "merge_results"]
