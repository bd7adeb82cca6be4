# hackernews-graphql -- hackernews/consumers.py
#
# Copyright © 2017 Sean Bolton.
#
# Permission is hereby granted, free of charge, to any person obtaining
# a copy of this software and associated documentation files (the
# "Software"), to deal in the Software without restriction, including
# without limitation the rights to use, copy, modify, merge, publish,
# distribute, sublicense, and/or sell copies of the Software, and to
# permit persons to whom the Software is furnished to do so, subject to
# the following conditions:
#
# The above copyright notice and this permission notice shall be
# included in all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
# EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF
# MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
# NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE
# LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION
# OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION
# WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.

import asyncio
import logging

from asgiref.sync import sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from graphql import ExecutionResult, OperationType, parse
from graphql.error import GraphQLSyntaxError
from graphql.utilities import get_operation_ast

from hackernews import events
from hackernews.context import RequestContext
from hackernews.store import AsyncStore, DjangoStore


logger = logging.getLogger(__name__)

SUBPROTOCOL = 'graphql-transport-ws'


# ========== GraphQL over WebSocket ==========

# Implements the server side of the graphql-transport-ws protocol
# (https://github.com/enisdenjo/graphql-ws/blob/master/PROTOCOL.md):
#
#   client                          server
#   connection_init {payload}  ->
#                              <-   connection_ack
#   subscribe {id, payload}    ->
#                              <-   next {id, payload} ...
#                              <-   complete {id}      (or error {id, payload})
#   complete {id}              ->   (the client is done with an operation)
#   ping                       ->
#                              <-   pong
#
# Each operation runs in its own task. The task is cancelled when the client completes the
# operation or goes away, and closes its event stream on the way out, which is what removes its
# listener from the event bus. That happens however the operation ended.
#
# Clients pass their token in the connection_init payload, as {"Authorization": "Bearer ..."}.
# Headers from the WebSocket handshake are used as well, with the payload taking precedence.

class GraphQLSubscriptionConsumer(AsyncJsonWebsocketConsumer):
    schema = None  # defaults to hackernews.schema.schema
    bus = None  # defaults to hackernews.events.bus

    def __init__(self, *args, schema=None, bus=None, **kwargs):
        # as_asgi(schema=..., bus=...) arrives here
        super().__init__(*args, **kwargs)
        if schema is not None:
            self.schema = schema
        if bus is not None:
            self.bus = bus

    async def connect(self):
        self.operations = {}
        self.connection_params = None
        if self.schema is None:
            from hackernews.schema import schema
            self.schema = schema
        if self.bus is None:
            self.bus = events.bus
        await self.accept(SUBPROTOCOL)

    async def disconnect(self, code):
        tasks = list(self.operations.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def receive_json(self, message, **kwargs):
        kind = message.get('type')
        if kind == 'connection_init':
            if self.connection_params is not None:
                await self.close(code=4429)  # too many initialisation requests
                return
            self.connection_params = message.get('payload') or {}
            await self.send_json({'type': 'connection_ack'})
        elif kind == 'ping':
            await self.send_json({'type': 'pong'})
        elif kind == 'pong':
            pass
        elif kind == 'subscribe':
            if self.connection_params is None:
                await self.close(code=4401)  # unauthorized
                return
            op_id = message.get('id')
            if op_id in self.operations:
                await self.close(code=4409)  # subscriber already exists
                return
            self.operations[op_id] = asyncio.ensure_future(
                self.run_operation(op_id, message.get('payload') or {}))
        elif kind == 'complete':
            task = self.operations.get(message.get('id'))
            if task is not None:
                task.cancel()
        else:
            await self.close(code=4400)

    def headers(self):
        headers = {}
        for name, value in self.scope.get('headers', ()):
            headers[name.decode('latin1')] = value.decode('latin1')
        headers.update(self.connection_params or {})
        return headers

    async def run_operation(self, op_id, payload):
        logger.debug('operation %s started', op_id)
        try:
            query = payload.get('query') or ''
            kwargs = {
                'variable_values': payload.get('variables'),
                'operation_name': payload.get('operationName'),
            }
            if self.is_subscription(query, kwargs['operation_name']):
                # payloads are completed in the event loop, so the store must not block it
                context = RequestContext.create(headers=self.headers(),
                                                store=AsyncStore(DjangoStore()), bus=self.bus)
                await self.stream(op_id, query, context, kwargs)
            else:
                context = RequestContext.create(headers=self.headers(), bus=self.bus)
                result = await sync_to_async(self.schema.execute)(
                    query, context_value=context, **kwargs)
                await self.send_result(op_id, result)
                await self.send_json({'type': 'complete', 'id': op_id})
        except asyncio.CancelledError:
            logger.debug('operation %s cancelled', op_id)
        finally:
            self.operations.pop(op_id, None)

    async def stream(self, op_id, query, context, kwargs):
        result = await self.schema.subscribe(query, context_value=context, **kwargs)
        if isinstance(result, ExecutionResult):
            # the subscription never started: bad document, or its subscribe function failed
            await self.send_json({
                'type': 'error',
                'id': op_id,
                'payload': result.formatted.get('errors', []),
            })
            return
        try:
            async for item in result:
                await self.send_result(op_id, item)
        finally:
            await result.aclose()
        await self.send_json({'type': 'complete', 'id': op_id})

    async def send_result(self, op_id, result):
        await self.send_json({'type': 'next', 'id': op_id, 'payload': result.formatted})

    @staticmethod
    def is_subscription(query, operation_name):
        try:
            operation = get_operation_ast(parse(query), operation_name)
        except GraphQLSyntaxError:
            # let the schema report it
            return False
        return operation is not None and operation.operation == OperationType.SUBSCRIPTION
