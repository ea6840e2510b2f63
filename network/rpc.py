"""
Taproot Relayer - Bitcoin Core RPC Client

This module provides the Bitcoin Core JSON-RPC client used by the relayer's
ledger service, with basic/cookie authentication, a pooled requests session
with retries, and per-method call statistics.
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests
from requests.auth import HTTPBasicAuth
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


# Bitcoin Core RPC error codes the ledger service maps to its own errors
RPC_MISC_ERROR = -1
RPC_INVALID_ADDRESS_OR_KEY = -5
RPC_WALLET_INSUFFICIENT_FUNDS = -6
RPC_VERIFY_ERROR = -25
RPC_VERIFY_REJECTED = -26
RPC_VERIFY_ALREADY_IN_CHAIN = -27
RPC_PARSE_ERROR = -32700

DEFAULT_PORTS = {
    'bitcoin': 8332,
    'mainnet': 8332,
    'testnet': 18332,
    'testnet4': 48332,
    'signet': 38332,
    'regtest': 18443,
}

# Data directory subfolder holding each network's .cookie
COOKIE_SUBDIRS = {
    'bitcoin': '',
    'mainnet': '',
    'testnet': 'testnet3',
    'testnet4': 'testnet4',
    'signet': 'signet',
    'regtest': 'regtest',
}


class RPCError(Exception):
    """Error reported by, or while talking to, the node."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")


class RPCConnectionError(RPCError):
    """The node could not be reached or answered with an HTTP error."""
    pass


class RPCAuthError(RPCError):
    """Credentials were missing or refused."""
    pass


class RPCTimeoutError(RPCError):
    """The node did not answer within the configured timeout."""
    pass


@dataclass
class RPCConfig:
    """Connection settings for a Bitcoin Core node."""
    host: str = "localhost"
    port: int = 18443
    username: Optional[str] = None
    password: Optional[str] = None
    cookie_file: Optional[str] = None
    wallet: Optional[str] = None
    network: str = "regtest"
    timeout: int = 30
    max_retries: int = 3
    backoff_factor: float = 1.0
    use_ssl: bool = False
    ssl_verify: bool = True

    def find_cookie_file(self) -> Optional[str]:
        """Look for the node's .cookie under ~/.bitcoin for this network."""
        path = Path("~/.bitcoin").expanduser() / COOKIE_SUBDIRS.get(self.network, self.network) / ".cookie"
        return str(path) if path.exists() else None

    @classmethod
    def from_env(cls, network: str = 'regtest') -> 'RPCConfig':
        """Read BITCOIN_RPC_* variables, falling back to the network's defaults."""
        env = os.environ
        return cls(
            host=env.get("BITCOIN_RPC_HOST", "localhost"),
            port=int(env.get("BITCOIN_RPC_PORT", DEFAULT_PORTS.get(network, 18443))),
            username=env.get("BITCOIN_RPC_USER"),
            password=env.get("BITCOIN_RPC_PASSWORD"),
            cookie_file=env.get("BITCOIN_RPC_COOKIE_FILE"),
            wallet=env.get("BITCOIN_RPC_WALLET"),
            network=network,
            timeout=int(env.get("BITCOIN_RPC_TIMEOUT", 30)),
            max_retries=int(env.get("BITCOIN_RPC_MAX_RETRIES", 3)),
            use_ssl=env.get("BITCOIN_RPC_USE_SSL", "false").lower() == "true",
        )


@dataclass
class RPCResponse:
    """Successful JSON-RPC reply."""
    result: Any
    id: Optional[Union[str, int]] = None
    elapsed: float = 0.0


class ConnectionPool:
    """Authenticated requests session shared by all calls to one node."""

    def __init__(self, config: RPCConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)

        # Bitcoin Core answers a full work queue with 503
        retries = Retry(
            total=config.max_retries,
            backoff_factor=config.backoff_factor,
            status_forcelist=[429, 502, 503, 504],
            allowed_methods=["POST"],
        )
        adapter = HTTPAdapter(max_retries=retries, pool_maxsize=4, pool_block=True)

        self.session = requests.Session()
        for prefix in ("http://", "https://"):
            self.session.mount(prefix, adapter)
        self.session.auth = self._credentials()

        self._lock = threading.Lock()
        self._next_id = 0
        self._counters = {"total_requests": 0, "successful_requests": 0, "failed_requests": 0}
        self._total_time = 0.0

    def _credentials(self) -> HTTPBasicAuth:
        """Username/password when both are set, otherwise the cookie file."""
        if self.config.username and self.config.password is not None:
            self.logger.debug("Using basic authentication")
            return HTTPBasicAuth(self.config.username, self.config.password)

        cookie_file = self.config.cookie_file or self.config.find_cookie_file()
        if not cookie_file:
            raise RPCAuthError(RPC_MISC_ERROR, "Either username/password or cookie file must be provided")

        try:
            cookie = Path(cookie_file).read_text().strip()
        except OSError as e:
            raise RPCAuthError(RPC_MISC_ERROR, f"Failed to read cookie file {cookie_file}: {e}")

        user, sep, password = cookie.partition(':')
        if not sep:
            raise RPCAuthError(RPC_MISC_ERROR, f"Invalid cookie file format: {cookie_file}")

        self.logger.debug(f"Using cookie file authentication: {cookie_file}")
        return HTTPBasicAuth(user, password)

    def get_url(self) -> str:
        """Node URL, pointing at the wallet endpoint when a wallet is set."""
        scheme = "https" if self.config.use_ssl else "http"
        wallet_path = f"wallet/{self.config.wallet}" if self.config.wallet else ""
        return f"{scheme}://{self.config.host}:{self.config.port}/{wallet_path}"

    def _count(self, success: bool, elapsed: float = 0.0):
        with self._lock:
            self._counters["total_requests"] += 1
            self._counters["successful_requests" if success else "failed_requests"] += 1
            self._total_time += elapsed

    def _post(self, body: str) -> requests.Response:
        try:
            return self.session.post(
                self.get_url(),
                data=body,
                headers={"Content-Type": "application/json", "User-Agent": "taproot-relayer/0.1"},
                timeout=self.config.timeout,
                verify=self.config.ssl_verify,
            )
        except requests.exceptions.Timeout:
            raise RPCTimeoutError(RPC_MISC_ERROR, f"Request timed out after {self.config.timeout}s")
        except requests.exceptions.ConnectionError as e:
            raise RPCConnectionError(RPC_MISC_ERROR, f"Connection error: {e}")
        except requests.exceptions.RequestException as e:
            raise RPCError(RPC_MISC_ERROR, f"Request failed: {e}")

    def request(self, method: str, params: List[Any]) -> RPCResponse:
        """
        Send one JSON-RPC call.

        Raises:
            RPCAuthError: On HTTP 401/403
            RPCTimeoutError: When the node does not answer in time
            RPCConnectionError: When the node is unreachable or returns an
                HTTP error without a JSON-RPC body
            RPCError: For errors reported by the node itself
        """
        with self._lock:
            self._next_id += 1
            request_id = self._next_id

        body = json.dumps({"jsonrpc": "1.0", "id": request_id, "method": method, "params": params})

        started = time.time()
        try:
            response = self._post(body)
        except RPCError:
            self._count(False)
            raise
        elapsed = time.time() - started

        try:
            result = self._decode(response)
        except RPCError:
            self._count(False, elapsed)
            raise

        self._count(True, elapsed)
        return RPCResponse(result=result.get("result"), id=result.get("id"), elapsed=elapsed)

    @staticmethod
    def _decode(response: requests.Response) -> Dict[str, Any]:
        if response.status_code in (401, 403):
            raise RPCAuthError(response.status_code, "Authentication failed")

        # Node-level errors arrive as JSON with HTTP 404/500
        try:
            reply = response.json()
        except ValueError as e:
            if response.status_code != 200:
                raise RPCConnectionError(response.status_code, f"HTTP {response.status_code}: {response.reason}")
            raise RPCError(RPC_PARSE_ERROR, f"Invalid JSON response: {e}")

        error = reply.get("error")
        if error:
            raise RPCError(error.get("code", RPC_MISC_ERROR), error.get("message", "unknown error"), error.get("data"))
        if response.status_code != 200:
            raise RPCConnectionError(response.status_code, f"HTTP {response.status_code}: {response.reason}")
        return reply

    def get_stats(self) -> Dict[str, Any]:
        """Request counters with average latency and success rate."""
        with self._lock:
            stats = dict(self._counters, total_time=self._total_time)

        total = stats["total_requests"]
        stats["average_request_time"] = stats["total_time"] / total if total else 0
        stats["success_rate"] = stats["successful_requests"] / total if total else 0
        return stats

    def close(self):
        self.session.close()


class BitcoinRPCClient:
    """
    Bitcoin Core RPC client exposing the calls the relayer needs.
    """

    def __init__(self, config: Optional[RPCConfig] = None):
        """
        Args:
            config: Node connection settings; read from BITCOIN_RPC_* when None
        """
        self.config = config or RPCConfig.from_env()
        self.pool = ConnectionPool(self.config)
        self.logger = logging.getLogger(__name__)

        self._method_stats: Dict[str, Dict[str, Any]] = {}
        self._method_stats_lock = threading.Lock()

    def _call(self, method: str, *params) -> Any:
        """
        Call a node method and return its result.

        Raises:
            RPCError: If the call fails for any reason
        """
        self.logger.debug(f"RPC call {method} with {len(params)} params")

        with self._method_stats_lock:
            stats = self._method_stats.setdefault(
                method, {"calls": 0, "errors": 0, "total_time": 0.0, "last_call": None}
            )
            stats["calls"] += 1
            stats["last_call"] = datetime.now(timezone.utc)

        started = time.time()
        try:
            return self.pool.request(method, list(params)).result
        except RPCError as e:
            with self._method_stats_lock:
                stats["errors"] += 1
            self.logger.error(f"RPC call {method} failed: {e}")
            raise
        finally:
            with self._method_stats_lock:
                stats["total_time"] += time.time() - started

    # Chain

    def getblockhash(self, height: int) -> str:
        """Hash of the active-chain block at height."""
        return self._call("getblockhash", height)

    def getblock(self, block_hash: str, verbosity: int = 1) -> Union[str, Dict[str, Any]]:
        """
        Fetch a block.

        Args:
            block_hash: Block hash (display order hex)
            verbosity: 0 for serialized hex, 1 or 2 for decoded JSON

        Returns:
            Serialized block hex for verbosity 0, block information otherwise
        """
        return self._call("getblock", block_hash, verbosity)

    # Transactions

    def getrawtransaction(self, txid: str, verbose: bool = False,
                          blockhash: Optional[str] = None) -> Union[str, Dict[str, Any]]:
        """Raw transaction hex, or decoded JSON when verbose."""
        if blockhash:
            return self._call("getrawtransaction", txid, verbose, blockhash)
        return self._call("getrawtransaction", txid, verbose)

    def sendrawtransaction(self, hex_string: str, max_fee_rate: Optional[float] = None) -> str:
        """
        Submit a signed transaction to the node's mempool.

        Args:
            hex_string: Serialized transaction
            max_fee_rate: Fee rate ceiling in BTC/kvB, node default when None

        Returns:
            txid of the accepted transaction
        """
        if max_fee_rate is None:
            return self._call("sendrawtransaction", hex_string)
        return self._call("sendrawtransaction", hex_string, max_fee_rate)

    # Wallet

    def sendtoaddress(self, address: str, amount: float) -> str:
        """
        Pay amount BTC to address from the node's wallet.

        Args:
            address: Destination address
            amount: Amount in BTC

        Returns:
            Transaction ID of the payment
        """
        return self._call("sendtoaddress", address, amount)

    def get_stats(self) -> Dict[str, Any]:
        """Connection counters plus per-method call counts and latency."""
        with self._method_stats_lock:
            methods = {
                method: {
                    "calls": stats["calls"],
                    "errors": stats["errors"],
                    "average_time": stats["total_time"] / stats["calls"] if stats["calls"] else 0,
                    "last_call": stats["last_call"].isoformat() if stats["last_call"] else None,
                }
                for method, stats in self._method_stats.items()
            }

        return {"connection": self.pool.get_stats(), "methods": methods}

    def close(self):
        self.pool.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
