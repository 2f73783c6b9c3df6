"""Attribution storage in BigQuery.

Reads clicks, conversions and sessions recorded by the tracking pipeline and
writes attribution results back to the same dataset:
- attribution_touchpoints: one row per credited touchpoint, replaced per conversion
- campaign_performance: daily campaign totals, incremented per attribution
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any

from google.api_core import exceptions
from google.cloud import bigquery

from adtrack.attribution.config import AttributionConfig
from adtrack.attribution.exceptions import PerformanceLookupError
from adtrack.attribution.schema import (
    AttributedTouchpoint,
    AttributionModel,
    AttributionResult,
    CampaignCredit,
    Conversion,
    Touchpoint,
)
from adtrack.attribution.storage import AttributionStore

logger = logging.getLogger(__name__)

# SQL for creating the tables the engine reads and writes
CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS `{dataset_ref}.clicks` (
    click_id STRING NOT NULL,
    campaign_id STRING,
    ad_id STRING,
    adset_id STRING,
    user_ip STRING,
    user_agent STRING,
    utm_source STRING,
    utm_medium STRING,
    utm_campaign STRING,
    fb_click_id STRING,
    browser_id STRING,
    device_type STRING,
    timestamp TIMESTAMP NOT NULL
);
CREATE TABLE IF NOT EXISTS `{dataset_ref}.user_sessions` (
    session_id STRING NOT NULL,
    first_click_id STRING,
    last_click_id STRING,
    session_start TIMESTAMP,
    session_end TIMESTAMP
);
CREATE TABLE IF NOT EXISTS `{dataset_ref}.conversions` (
    conversion_id STRING NOT NULL,
    click_id STRING,
    campaign_id STRING,
    conversion_type STRING NOT NULL,
    conversion_value FLOAT64 DEFAULT 0,
    currency STRING DEFAULT 'USD',
    timestamp TIMESTAMP NOT NULL,
    attribution_model STRING DEFAULT 'last_click'
);
CREATE TABLE IF NOT EXISTS `{dataset_ref}.attribution_touchpoints` (
    conversion_id STRING NOT NULL,
    click_id STRING NOT NULL,
    position_in_journey INT64,
    total_positions INT64,
    time_to_conversion INT64,
    attribution_weight FLOAT64 DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP()
);
CREATE TABLE IF NOT EXISTS `{dataset_ref}.campaign_performance` (
    campaign_id STRING NOT NULL,
    date DATE NOT NULL,
    clicks INT64 DEFAULT 0,
    conversions FLOAT64 DEFAULT 0,
    conversion_value FLOAT64 DEFAULT 0,
    cost FLOAT64 DEFAULT 0,
    impressions INT64 DEFAULT 0,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP()
);
"""


class BigQueryAttributionStore(AttributionStore):
    """Attribution storage backed by a BigQuery dataset.

    Blocking BigQuery calls run in a worker thread so the engine's event
    loop is never blocked.

    Example:
        >>> store = BigQueryAttributionStore(project_id="my-project", dataset="ad_tracking")
        >>> store.ensure_tables_exist()
        >>> engine = AttributionEngine(store)
    """

    def __init__(
        self,
        project_id: str,
        dataset: str = "ad_tracking",
        client: bigquery.Client | None = None,
        location: str = "US",
    ):
        """Initialize attribution storage.

        Args:
            project_id: GCP project ID containing the tracking dataset.
            dataset: Dataset holding the tracking tables.
            client: Optional BigQuery client. Will be created if not provided.
            location: BigQuery location for the lazily created client.
        """
        self.project_id = project_id
        self.dataset = dataset
        self.location = location
        self._client = client

    @classmethod
    def from_config(cls, config: AttributionConfig) -> BigQueryAttributionStore:
        if not config.project_id:
            raise ValueError("project_id is required for BigQuery storage")
        return cls(
            project_id=config.project_id,
            dataset=config.dataset,
            location=config.location,
        )

    @property
    def client(self) -> bigquery.Client:
        """Lazy-initialize BigQuery client."""
        if self._client is None:
            self._client = bigquery.Client(project=self.project_id, location=self.location)
        return self._client

    @property
    def dataset_ref(self) -> str:
        return f"{self.project_id}.{self.dataset}"

    def table_id(self, table: str) -> str:
        return f"{self.dataset_ref}.{table}"

    def ensure_tables_exist(self) -> None:
        """Create the tracking and attribution tables if they don't exist."""
        sql = CREATE_TABLES_SQL.format(dataset_ref=self.dataset_ref)
        self.client.query(sql).result()
        logger.info(f"Ensured attribution tables exist in {self.dataset_ref}")

    def _query(
        self,
        sql: str,
        parameters: list[Any] | None = None,
    ) -> list[dict[str, Any]]:
        job_config = bigquery.QueryJobConfig(query_parameters=parameters or [])
        result = self.client.query(sql, job_config=job_config).result()
        return [dict(row.items()) for row in result]

    # Reads

    def _fetch_conversion(self, conversion_id: str) -> Conversion | None:
        sql = f"""
        SELECT c.conversion_id, c.click_id, c.campaign_id, c.conversion_type,
               c.conversion_value, c.currency, c.timestamp,
               cl.user_ip, cl.device_type, us.session_id, cl.fb_click_id, cl.browser_id
        FROM `{self.table_id("conversions")}` c
        LEFT JOIN `{self.table_id("clicks")}` cl ON c.click_id = cl.click_id
        LEFT JOIN `{self.table_id("user_sessions")}` us ON cl.click_id = us.last_click_id
        WHERE c.conversion_id = @conversion_id
        LIMIT 1
        """
        rows = self._query(sql, [
            bigquery.ScalarQueryParameter("conversion_id", "STRING", conversion_id),
        ])
        if not rows:
            return None
        return Conversion.from_dict(rows[0])

    async def fetch_conversion(self, conversion_id: str) -> Conversion | None:
        return await asyncio.to_thread(self._fetch_conversion, conversion_id)

    def _fetch_journey(
        self,
        conversion: Conversion,
        window_start: datetime,
        window_end: datetime,
    ) -> list[Touchpoint]:
        # Rows with no identity match are filtered again by the resolver
        sql = f"""
        SELECT DISTINCT c.click_id, c.campaign_id, c.ad_id, c.adset_id,
               c.timestamp, c.utm_source, c.utm_medium, c.utm_campaign,
               c.user_ip, c.fb_click_id, c.browser_id, c.device_type,
               us.session_id
        FROM `{self.table_id("clicks")}` c
        LEFT JOIN `{self.table_id("user_sessions")}` us
            ON c.click_id = us.first_click_id OR c.click_id = us.last_click_id
        WHERE c.timestamp >= @window_start
          AND c.timestamp <= @window_end
          AND (
              c.user_ip = @user_ip OR
              c.fb_click_id = @fb_click_id OR
              c.browser_id = @browser_id OR
              us.session_id = @session_id
          )
        ORDER BY c.timestamp ASC
        """
        rows = self._query(sql, [
            bigquery.ScalarQueryParameter("window_start", "TIMESTAMP", window_start),
            bigquery.ScalarQueryParameter("window_end", "TIMESTAMP", window_end),
            bigquery.ScalarQueryParameter("user_ip", "STRING", conversion.user_ip),
            bigquery.ScalarQueryParameter("fb_click_id", "STRING", conversion.fb_click_id),
            bigquery.ScalarQueryParameter("browser_id", "STRING", conversion.browser_id),
            bigquery.ScalarQueryParameter("session_id", "STRING", conversion.session_id),
        ])
        return [Touchpoint.from_dict(row) for row in rows]

    async def fetch_journey(
        self,
        conversion: Conversion,
        window_start: datetime,
        window_end: datetime,
    ) -> list[Touchpoint]:
        return await asyncio.to_thread(self._fetch_journey, conversion, window_start, window_end)

    def _fetch_campaign_performance(self, campaign_id: str) -> dict[str, Any] | None:
        sql = f"""
        SELECT
            AVG(IF(clicks > 0, conversions / clicks, 0)) AS conversion_rate,
            AVG(IF(cost > 0, conversion_value / cost, 0)) AS roas
        FROM `{self.table_id("campaign_performance")}`
        WHERE campaign_id = @campaign_id
          AND date >= DATE_SUB(CURRENT_DATE(), INTERVAL 30 DAY)
        """
        try:
            rows = self._query(sql, [
                bigquery.ScalarQueryParameter("campaign_id", "STRING", campaign_id),
            ])
        except exceptions.GoogleAPICallError as e:
            raise PerformanceLookupError(f"Campaign performance query failed: {e}") from e
        return rows[0] if rows else None

    async def fetch_campaign_performance(self, campaign_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._fetch_campaign_performance, campaign_id)

    def _fetch_channel_performance(self, channel: str) -> dict[str, Any] | None:
        sql = f"""
        SELECT
            SAFE_DIVIDE(COUNT(DISTINCT co.conversion_id), COUNT(DISTINCT c.click_id))
                AS conversion_rate
        FROM `{self.table_id("clicks")}` c
        LEFT JOIN `{self.table_id("conversions")}` co ON c.click_id = co.click_id
        WHERE c.utm_source = @channel
          AND c.timestamp >= TIMESTAMP_SUB(CURRENT_TIMESTAMP(), INTERVAL 30 DAY)
        """
        try:
            rows = self._query(sql, [
                bigquery.ScalarQueryParameter("channel", "STRING", channel),
            ])
        except exceptions.GoogleAPICallError as e:
            raise PerformanceLookupError(f"Channel performance query failed: {e}") from e
        return rows[0] if rows else None

    async def fetch_channel_performance(self, channel: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._fetch_channel_performance, channel)

    # Writes

    def _replace_statements(
        self,
        touchpoints: list[AttributedTouchpoint],
    ) -> tuple[str, list[Any]]:
        """DELETE then INSERT for one conversion, keyed by @conversion_id."""
        table = self.table_id("attribution_touchpoints")
        sql = f"DELETE FROM `{table}` WHERE conversion_id = @conversion_id;\n"
        if not touchpoints:
            return sql, []

        sql += f"""
        INSERT INTO `{table}` (
            conversion_id, click_id, position_in_journey, total_positions,
            time_to_conversion, attribution_weight, created_at
        )
        SELECT @conversion_id, tp.click_id, tp.position_in_journey, tp.total_positions,
               tp.time_to_conversion, tp.attribution_weight, CURRENT_TIMESTAMP()
        FROM UNNEST(@touchpoints) AS tp;
        """
        parameter = bigquery.ArrayQueryParameter(
            "touchpoints",
            "STRUCT",
            [self._touchpoint_struct(tp) for tp in touchpoints],
        )
        return sql, [parameter]

    @staticmethod
    def _touchpoint_struct(tp: AttributedTouchpoint) -> bigquery.StructQueryParameter:
        row = tp.to_dict()
        return bigquery.StructQueryParameter(
            None,
            bigquery.ScalarQueryParameter("click_id", "STRING", row["click_id"]),
            bigquery.ScalarQueryParameter("position_in_journey", "INT64", row["position_in_journey"]),
            bigquery.ScalarQueryParameter("total_positions", "INT64", row["total_positions"]),
            bigquery.ScalarQueryParameter("time_to_conversion", "INT64", row["time_to_conversion"]),
            bigquery.ScalarQueryParameter("attribution_weight", "FLOAT64", row["attribution_weight"]),
        )

    def _model_statement(self) -> str:
        return f"""
        UPDATE `{self.table_id("conversions")}`
        SET attribution_model = @model
        WHERE conversion_id = @conversion_id;
        """

    def _credit_statement(self) -> str:
        # Additive upsert: existing totals are incremented, never overwritten
        return f"""
        MERGE `{self.table_id("campaign_performance")}` AS target
        USING (SELECT * FROM UNNEST(@credits)) AS source
        ON target.campaign_id = source.campaign_id AND target.date = source.date
        WHEN MATCHED THEN
            UPDATE SET
                conversions = COALESCE(target.conversions, 0) + source.conversions,
                conversion_value = COALESCE(target.conversion_value, 0) + source.conversion_value,
                updated_at = CURRENT_TIMESTAMP()
        WHEN NOT MATCHED THEN
            INSERT (campaign_id, date, conversions, conversion_value, updated_at)
            VALUES (
                source.campaign_id, source.date, source.conversions,
                source.conversion_value, CURRENT_TIMESTAMP()
            );
        """

    @staticmethod
    def _credits_parameter(credits: list[CampaignCredit]) -> bigquery.ArrayQueryParameter:
        return bigquery.ArrayQueryParameter(
            "credits",
            "STRUCT",
            [
                bigquery.StructQueryParameter(
                    None,
                    bigquery.ScalarQueryParameter("campaign_id", "STRING", credit.campaign_id),
                    bigquery.ScalarQueryParameter("date", "DATE", credit.date),
                    bigquery.ScalarQueryParameter(
                        "conversions", "FLOAT64", credit.fractional_conversions
                    ),
                    bigquery.ScalarQueryParameter(
                        "conversion_value", "FLOAT64", credit.attributed_value
                    ),
                )
                for credit in credits
            ],
        )

    def _run_transaction(self, statements: list[str], parameters: list[Any]) -> None:
        """Run statements as one script; any error rolls everything back."""
        body = "\n".join(statements)
        sql = f"""
        BEGIN
            BEGIN TRANSACTION;
            {body}
            COMMIT TRANSACTION;
        EXCEPTION WHEN ERROR THEN
            ROLLBACK TRANSACTION;
            RAISE USING MESSAGE = @@error.message;
        END;
        """
        self._query(sql, parameters)

    def _replace_attribution_touchpoints(
        self,
        conversion_id: str,
        touchpoints: list[AttributedTouchpoint],
    ) -> None:
        replace_sql, parameters = self._replace_statements(touchpoints)
        parameters.append(bigquery.ScalarQueryParameter("conversion_id", "STRING", conversion_id))
        self._run_transaction([replace_sql], parameters)

    async def replace_attribution_touchpoints(
        self,
        conversion_id: str,
        touchpoints: list[AttributedTouchpoint],
    ) -> None:
        await asyncio.to_thread(self._replace_attribution_touchpoints, conversion_id, touchpoints)
        logger.debug(f"Replaced {len(touchpoints)} attribution rows for {conversion_id}")

    def _set_conversion_attribution_model(
        self,
        conversion_id: str,
        model: AttributionModel,
    ) -> None:
        self._query(self._model_statement(), [
            bigquery.ScalarQueryParameter("model", "STRING", model.value),
            bigquery.ScalarQueryParameter("conversion_id", "STRING", conversion_id),
        ])

    async def set_conversion_attribution_model(
        self,
        conversion_id: str,
        model: AttributionModel,
    ) -> None:
        await asyncio.to_thread(self._set_conversion_attribution_model, conversion_id, model)

    def _accumulate_campaign_credit(
        self,
        campaign_id: str,
        day: date,
        fractional_conversions: float,
        attributed_value: float,
    ) -> None:
        credit = CampaignCredit(campaign_id, day, fractional_conversions, attributed_value)
        self._query(self._credit_statement(), [self._credits_parameter([credit])])

    async def accumulate_campaign_credit(
        self,
        campaign_id: str,
        day: date,
        fractional_conversions: float,
        attributed_value: float,
    ) -> None:
        await asyncio.to_thread(
            self._accumulate_campaign_credit,
            campaign_id,
            day,
            fractional_conversions,
            attributed_value,
        )

    def _save_attribution(
        self,
        result: AttributionResult,
        credits: list[CampaignCredit],
    ) -> None:
        replace_sql, parameters = self._replace_statements(result.touchpoints)
        statements = [replace_sql, self._model_statement()]
        parameters += [
            bigquery.ScalarQueryParameter("conversion_id", "STRING", result.conversion_id),
            bigquery.ScalarQueryParameter("model", "STRING", result.model.value),
        ]
        if credits:
            statements.append(self._credit_statement())
            parameters.append(self._credits_parameter(credits))

        self._run_transaction(statements, parameters)

    async def save_attribution(
        self,
        result: AttributionResult,
        credits: list[CampaignCredit],
    ) -> None:
        await asyncio.to_thread(self._save_attribution, result, credits)
        logger.debug(
            f"Saved {len(result.touchpoints)} attribution rows and "
            f"{len(credits)} campaign credits for {result.conversion_id}"
        )

    def _fetch_attribution_analysis(
        self,
        campaign_id: str,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        sql = f"""
        WITH attributed AS (
            SELECT c.attribution_model, c.conversion_id, c.conversion_value,
                   at.click_id, at.attribution_weight
            FROM `{self.table_id("conversions")}` c
            JOIN `{self.table_id("attribution_touchpoints")}` at
                ON c.conversion_id = at.conversion_id
            JOIN `{self.table_id("clicks")}` cl ON at.click_id = cl.click_id
            WHERE cl.campaign_id = @campaign_id
              AND c.timestamp >= @start
              AND c.timestamp <= @end
        ),
        model_values AS (
            SELECT attribution_model, SUM(conversion_value) AS total_value
            FROM (
                SELECT DISTINCT attribution_model, conversion_id, conversion_value
                FROM attributed
            )
            GROUP BY attribution_model
        )
        SELECT
            a.attribution_model,
            COUNT(DISTINCT a.conversion_id) AS conversions,
            ANY_VALUE(m.total_value) AS total_value,
            AVG(a.attribution_weight) AS avg_weight,
            COUNT(DISTINCT a.click_id) AS attributed_touchpoints
        FROM attributed a
        JOIN model_values m USING (attribution_model)
        GROUP BY a.attribution_model
        ORDER BY total_value DESC
        """
        return self._query(sql, [
            bigquery.ScalarQueryParameter("campaign_id", "STRING", campaign_id),
            bigquery.ScalarQueryParameter("start", "TIMESTAMP", start),
            bigquery.ScalarQueryParameter("end", "TIMESTAMP", end),
        ])

    async def fetch_attribution_analysis(
        self,
        campaign_id: str,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._fetch_attribution_analysis, campaign_id, start, end)
