"""Ad report specifications for the v3 async reporting API."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


SPONSORED_PRODUCTS = "SPONSORED_PRODUCTS"
SPONSORED_DISPLAY = "SPONSORED_DISPLAY"


class ReportSpec(BaseModel):
    """What to ask the reporting API for: product line, grouping, columns, granularity."""
    name: str
    ad_product: str = Field(default=SPONSORED_PRODUCTS, alias="adProduct")
    report_type_id: str = Field(alias="reportTypeId")
    group_by: list[str] = Field(alias="groupBy")
    columns: list[str]
    time_unit: str = Field(default="DAILY", alias="timeUnit")
    format: str = "GZIP_JSON"

    model_config = {"populate_by_name": True}

    def request_body(self, start: date, end: date) -> dict:
        """Body for POST /reporting/reports covering [start, end]."""
        return {
            "name": self.name,
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
            "configuration": self.model_dump(by_alias=True, exclude={"name"}),
        }


# Campaign performance, aggregated to campaign_week and brand_week
SP_CAMPAIGNS = ReportSpec(
    name="SP Campaign Performance Report",
    reportTypeId="spCampaigns",
    groupBy=["campaign"],
    columns=["date", "campaignId", "campaignName", "impressions", "clicks", "cost",
             "sales14d", "purchases14d"],
)

# SKU-level advertised product performance, aggregated to sku_week
SP_ADVERTISED_PRODUCT = ReportSpec(
    name="SP Advertised Product Report",
    reportTypeId="spAdvertisedProduct",
    groupBy=["advertiser"],
    columns=["date", "advertisedAsin", "advertisedSku", "campaignId", "impressions",
             "clicks", "cost", "sales14d", "purchases14d"],
)

SP_SEARCH_TERM = ReportSpec(
    name="SP Search Term Report",
    reportTypeId="spSearchTerm",
    groupBy=["searchTerm"],
    columns=["date", "campaignId", "campaignName", "adGroupId", "adGroupName", "searchTerm",
             "impressions", "clicks", "cost", "sales14d", "purchases14d"],
)

# The v3 API exposes the SP expression as 'targeting', the SD one as 'targetingExpression'
SP_TARGETING = ReportSpec(
    name="SP Targeting Report",
    reportTypeId="spTargeting",
    groupBy=["targeting"],
    columns=["date", "campaignId", "campaignName", "targeting", "impressions", "clicks",
             "cost", "sales14d", "purchases14d"],
)

SD_TARGETING = ReportSpec(
    name="SD Targeting Report",
    adProduct=SPONSORED_DISPLAY,
    reportTypeId="sdTargeting",
    groupBy=["targeting"],
    columns=["date", "campaignId", "campaignName", "targetingExpression", "impressions",
             "clicks", "cost", "sales", "purchases"],
)
