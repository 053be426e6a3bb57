"""
GBP Post Worker Orchestrator
============================
Runs one scheduled post through the pipeline and maps the outcome to a
{statusCode, body} response.

  validating -> token_acquired -> post_loaded -> media_linked
    -> payload_built -> published -> reconciled -> notified

The post is read while validating so an ineligible post exits before any
token exchange, publish call or write.
"""

import json
import logging
from typing import Optional

import httpx

from .context import PublishContext, PipelineState, create_context
from .errors import PostIneligible, error_from_exception
from .payload import build_local_post
from .reconcile_stage import run_reconcile_stage

logger = logging.getLogger("gbp-post-worker")

SUCCESS_MESSAGE = "Scheduled post published successfully"
FAILURE_MESSAGE = "Failed to process scheduled post"


def make_response(status_code: int, body: dict) -> dict:
    return {"statusCode": status_code, "body": json.dumps(body)}


class Orchestrator:
    def __init__(
        self,
        token_provider,
        repo,
        linker,
        publisher,
        dispatcher,
        http: httpx.AsyncClient,
    ):
        self.token_provider = token_provider
        self.repo = repo
        self.linker = linker
        self.publisher = publisher
        self.dispatcher = dispatcher
        self.http = http

    async def run_pipeline(self, ctx: PublishContext) -> PublishContext:
        # Validating
        post = await self.repo.load_eligible_post(ctx.post_id, ctx.container_id)
        if not post.is_eligible:
            raise PostIneligible(ctx.post_id, post.state)
        ctx.post = post

        access_token = await self.token_provider.get_access_token(ctx.account_id, ctx.organization_id)
        ctx.advance(PipelineState.TOKEN_ACQUIRED)

        ctx.media = await self.repo.load_media(ctx.post_id, ctx.container_id)
        ctx.advance(PipelineState.POST_LOADED)

        ctx.media_links = await self.linker.link_media(ctx.media)
        ctx.advance(PipelineState.MEDIA_LINKED)

        ctx.payload = build_local_post(ctx.post, ctx.media_links, ctx.media)
        ctx.advance(PipelineState.PAYLOAD_BUILT)

        logger.info(f"Publishing post {ctx.post_id} ({ctx.payload['postType']}) to location {ctx.container_id}")
        ctx.result = await self.publisher.create_post(
            ctx.account_id,
            ctx.container_id,
            ctx.payload,
            access_token,
        )
        ctx.advance(PipelineState.PUBLISHED)

        await run_reconcile_stage(ctx, self.repo, self.linker, self.http)
        ctx.advance(PipelineState.RECONCILED)

        ctx.notified = await self.dispatcher.notify(ctx.user_id, ctx.post)
        ctx.advance(PipelineState.NOTIFIED)
        return ctx

    async def handle(self, event: dict) -> dict:
        """Process one trigger event. Always returns exactly one response."""
        ctx: Optional[PublishContext] = None
        try:
            ctx = create_context(event)
            logger.info(f"Starting pipeline: post={ctx.post_id}, gmb={ctx.container_id}, account={ctx.account_id}")
            await self.run_pipeline(ctx)

            logger.info(f"Pipeline complete: {json.dumps(ctx.to_summary_dict())}")
            return make_response(200, {
                "message": SUCCESS_MESSAGE,
                "gmbPostName": ctx.gmb_post_name,
            })

        except PostIneligible as e:
            ctx.advance(PipelineState.INELIGIBLE)
            logger.info(f"Post not eligible, nothing to do: {e.reason}")
            return make_response(400, {
                "message": f"Post is not in SCHEDULED state (current state: {e.state})",
            })

        except Exception as e:
            err = error_from_exception(e, stage=ctx.state.value if ctx else "validating")
            logger.exception(f"Pipeline failed: {err}")
            details = {"event": event, "error": err.to_dict()}
            if ctx:
                ctx.mark_error(err.code.value, err.message)
                details["context"] = ctx.to_summary_dict()
            await self.dispatcher.notify_admin_error("scheduled_post_failure", details)
            return make_response(500, {
                "message": FAILURE_MESSAGE,
                "error": err.message,
            })
