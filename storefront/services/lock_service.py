import redis.asyncio as redis
from storefront.utils.retry import redis_retry
from storefront.utils.settings import REDIS_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

#LUA porownaj i usun, atomicity
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#redis wykonuje skrypt lua atomowo, jedna nieprzerywalna operacja
#nie mozna wcisnac sie miedzy GET a DEL, zwalnia tylko wlasciciel tokenu


class LockService:
    """
    -blokada checkoutu koszyka (jeden zakup na koszyk naraz)
    -zwalnianie locka tylko przez wlasciciela tokenu
    -atomowosc przy pomocy lua
    """

    def __init__(self, url: str | None = None, client=None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @staticmethod
    def _key(cart_id: int) -> str:
        return f"cart:{cart_id}:checkout"

    @redis_retry()
    async def acquire_checkout_lock(self, cart_id: int, token: str, ttl: int) -> bool:
        key = self._key(cart_id)
        logger.info(f"Acquire lock {key}")
        #SET cart:1:checkout "<token>" NX EX 30
        acquired = await self.redis.set(
            name=key,
            value=token,
            nx=True, #tylko jesli klucz nie istnieje
            ex=ttl, #wygasa sam, porzucony checkout nie blokuje koszyka na zawsze
        )
        return bool(acquired)

    @redis_retry()
    async def release_checkout_lock(self, cart_id: int, token: str) -> bool:
        key = self._key(cart_id)
        logger.info(f"Release lock {key}")
        res = await self.redis.eval(_RELEASE_LUA, 1, key, token)
        return bool(res)
