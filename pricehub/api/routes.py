import asyncio
import time
import uuid

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect

from pricehub.errors import RecordNotFoundError, SourceUnavailable
from pricehub.schemas.quote import PriceUpdate
from pricehub.schemas.scrape import ScrapeScheduleRequest, ScrapeToggleRequest
from pricehub.schemas.token import TokenCreate

router = APIRouter()

_WS_ACTIONS = {'subscribe', 'unsubscribe'}


def _service(request: Request):
    return request.app.state.market_data_service


@router.get('/health')
def health():
    return {'status': 'OK', 'ts': int(time.time())}


@router.get('/tokens')
def list_tokens(request: Request):
    return [t.model_dump() for t in _service(request).list_tokens()]


@router.post('/tokens')
def add_token(req: TokenCreate, request: Request):
    try:
        return _service(request).add_token(req).model_dump()
    except ValueError as exc:
        if str(exc) == 'TOKEN_ALREADY_EXISTS':
            raise HTTPException(status_code=409, detail='TOKEN_ALREADY_EXISTS') from exc
        raise


@router.delete('/tokens/{symbol}')
def delete_token(symbol: str, request: Request):
    try:
        _service(request).delete_token(symbol)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail='TOKEN_NOT_FOUND') from exc
    return {'success': True, 'symbol': symbol.upper()}


@router.get('/tokens/{symbol}/price')
def get_price(symbol: str, request: Request):
    try:
        snapshot = _service(request).get_price(symbol)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail='TOKEN_NOT_FOUND') from exc
    except SourceUnavailable as exc:
        raise HTTPException(status_code=503, detail='SOURCE_UNAVAILABLE') from exc
    return snapshot.model_dump()


@router.get('/tokens/{symbol}/history')
def get_history(symbol: str, request: Request, period: str = '24h'):
    try:
        points = _service(request).get_history(symbol, period)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail='TOKEN_NOT_FOUND') from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='INVALID_PERIOD') from exc
    return [p.model_dump() for p in points]


@router.post('/tokens/{symbol}/extremes')
def compute_extremes(symbol: str, request: Request):
    try:
        record = _service(request).compute_extremes(symbol)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail='TOKEN_NOT_FOUND') from exc
    if record is None:
        return {'computed': False, 'symbol': symbol.upper()}
    return {'computed': True, **record.model_dump()}


@router.get('/scraping/status')
def scraping_status(request: Request):
    return _service(request).get_scrape_status().model_dump()


@router.post('/scraping/toggle')
def scraping_toggle(req: ScrapeToggleRequest, request: Request):
    _service(request).set_scrape_enabled(req.enabled)
    return {'success': True, 'enabled': req.enabled}


@router.post('/scraping/schedule')
def scraping_schedule(req: ScrapeScheduleRequest, request: Request):
    try:
        _service(request).set_scrape_interval(req.interval)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='INVALID_INTERVAL') from exc
    return {'success': True, 'interval': req.interval}


@router.get('/metrics/price')
def price_metrics(request: Request):
    return _service(request).metrics()


async def _stop_sender(sender: asyncio.Task, subscriber_id: str) -> Exception | None:
    """Cancel the outbound pump and collect whatever ended it."""
    sender.cancel()
    try:
        await sender
    except asyncio.CancelledError:
        return None
    except Exception as exc:
        print(f'[FANOUT][ws_send_error] subscriber={subscriber_id} error={exc}', flush=True)
        return exc
    return None


@router.websocket('/ws/prices')
async def price_stream(websocket: WebSocket):
    service = websocket.app.state.market_data_service
    fanout = service.fanout
    await websocket.accept()

    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue = asyncio.Queue()
    subscriber_id = f'ws_{uuid.uuid4().hex[:8]}'

    # runs on the fanout thread
    def push(update: PriceUpdate) -> None:
        message = {'type': 'price_update', **update.model_dump(mode='json')}
        loop.call_soon_threadsafe(outbox.put_nowait, message)

    async def pump() -> None:
        while True:
            await websocket.send_json(await outbox.get())

    sender = asyncio.create_task(pump())
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await outbox.put({'type': 'error', 'message': 'Invalid JSON message'})
                continue

            action = message.get('action') if isinstance(message, dict) else None
            symbol = message.get('symbol') if isinstance(message, dict) else None
            if action not in _WS_ACTIONS or not isinstance(symbol, str) or not symbol.strip():
                await outbox.put({'type': 'error', 'message': 'Invalid token symbol'})
                continue

            symbol = symbol.strip().upper()
            if action == 'subscribe' and not service.is_tracked(symbol):
                await outbox.put({'type': 'error', 'message': f'Token {symbol} not found'})
                continue
            if action == 'subscribe':
                fanout.subscribe(symbol, subscriber_id, push)
            else:
                fanout.unsubscribe(symbol, subscriber_id)
            print(f'[FANOUT][ws_{action}] subscriber={subscriber_id} symbol={symbol}', flush=True)
            await outbox.put({'type': f'{action}d', 'symbol': symbol})
    except WebSocketDisconnect:
        pass
    finally:
        fanout.unsubscribe_all(subscriber_id)
        await _stop_sender(sender, subscriber_id)
