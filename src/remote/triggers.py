"""Trigger client with feed lifecycle handling.

Wraps the raw trigger and feed resources. create() and delete() also
register and unregister the trigger's feed; the remaining operations are
forwarded unchanged.
"""

import copy
import logging

from params import create_key_value_object_from_array
from remote.client import RemoteError, ResourceClient

logger = logging.getLogger(__name__)

FEED_ANNOTATION_KEY = 'feed'


class TriggerClient:
    """Trigger operations over a base trigger resource and the feed resource."""

    def __init__(self, triggers: ResourceClient, feeds: ResourceClient):
        self.base = triggers
        self.feeds = feeds

    async def create(self, entity: dict) -> dict:
        """Create a trigger and, if it declares a feed, register the feed.

        If the feed registration fails the new trigger is deleted again and
        the error propagates.
        """
        entity = copy.deepcopy(entity)
        trigger = entity.get('trigger') or {}
        feed = trigger.get('feed')
        if feed:
            trigger.setdefault('annotations', []).append({'key': FEED_ANNOTATION_KEY, 'value': feed})
            entity['trigger'] = trigger

        created = await self.base.create(entity)
        if not feed:
            return created

        name = entity['name']
        try:
            # a feed can't be updated in place, only deleted and created
            try:
                await self.feeds.delete({'name': feed, 'trigger': name})
            except RemoteError as e:
                logger.debug(f"No previous feed {feed} for trigger {name}: {e}")
            await self.feeds.create({
                'name': feed,
                'trigger': name,
                'params': create_key_value_object_from_array(trigger.get('parameters')),
            })
        except Exception:
            await self.base.delete({'name': name})
            raise
        return created

    async def delete(self, ref: dict) -> dict:
        """Delete a trigger, unregistering its feeds first."""
        existing = await self.base.get(ref)
        for annotation in existing.get('annotations') or []:
            if annotation.get('key') == FEED_ANNOTATION_KEY:
                await self.feeds.delete({'name': annotation.get('value'), 'trigger': ref['name']})
        return await self.base.delete(ref)

    async def update(self, entity: dict) -> dict:
        return await self.base.update(entity)

    async def get(self, ref: dict) -> dict:
        return await self.base.get(ref)

    async def list(self, **options) -> list[dict]:
        return await self.base.list(**options)
