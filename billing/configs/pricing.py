"""Static pricing configuration.

Loaded once at process start and passed into the pricing resolver. All
amounts are in tiyin (1 UZS = 100 tiyin).
"""

from pydantic import BaseModel, Field


class CatalogItem(BaseModel):
    Price: int = Field(description="Unit price in tiyin")
    Name: str = Field(description="Display name")
    NameRu: str = Field(default="", description="Russian display name")


class PricingConfig(BaseModel):
    Currency: str = Field(default="UZS", description="Currency for one-time purchases")
    CourseAccessMultiplier: int = Field(
        default=3,
        description="Lifetime course access costs this many months of the course plan",
    )
    AiCreditsPerUnit: int = Field(default=50, description="AI credits granted per purchased unit")
    FreeRoadmapGenerations: int = Field(default=1, description="Roadmap generations every user gets for free")
    RoadmapGeneration: CatalogItem = Field(
        default_factory=lambda: CatalogItem(
            Price=15_000 * 100,
            Name="Roadmap Generation",
            NameRu="Генерация Roadmap",
        ),
    )
    AiCredits: CatalogItem = Field(
        default_factory=lambda: CatalogItem(
            Price=10_000 * 100,
            Name="AI Credits (50)",
            NameRu="AI кредиты (50)",
        ),
    )
