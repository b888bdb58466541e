import logging
import time
from typing import Any, Callable, Dict, Iterator, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from rbacdedup.errors import ConnectivityError

logger = logging.getLogger("dedup.client")

DEFAULT_CLIENT_CONFIG = {
    "page_size": 500,
    "request_timeout": 30,
    "max_retries": 3,
    "base_delay": 1.0,
    "backoff_factor": 2.0,
}


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, ApiException):
        return exc.status == 429 or (exc.status or 0) >= 500
    return True


class KubeRbacClient:
    """Lists and deletes RBAC bindings through `RbacAuthorizationV1Api`.

    Listing is paginated with `limit`/`continue` and retried with exponential
    backoff. The listing is not a transactional read: if the server rotates
    its snapshot between pages, entries can be repeated or missed.
    """

    def __init__(self, rbac_api, **kwargs):
        self.rbac_api = rbac_api
        self.page_size = kwargs.get("page_size", DEFAULT_CLIENT_CONFIG["page_size"])
        self.request_timeout = kwargs.get("request_timeout", DEFAULT_CLIENT_CONFIG["request_timeout"])
        self.max_retries = kwargs.get("max_retries", DEFAULT_CLIENT_CONFIG["max_retries"])
        self.base_delay = kwargs.get("base_delay", DEFAULT_CLIENT_CONFIG["base_delay"])
        self.backoff_factor = kwargs.get("backoff_factor", DEFAULT_CLIENT_CONFIG["backoff_factor"])
        self.sleep = kwargs.get("sleep", time.sleep)

    def _call(self, what: str, fn: Callable[..., Any], **kwargs) -> Any:
        last_err: Optional[Exception] = None
        attempts = max(1, self.max_retries)
        for i in range(attempts):
            try:
                return fn(**kwargs)
            except Exception as e:
                last_err = e
                if not _is_retryable(e) or i == attempts - 1:
                    break
                delay = self.base_delay * (self.backoff_factor ** i)
                logger.warning(f"{what}: attempt {i + 1} failed: {e}; retrying in {delay:.1f}s")
                self.sleep(delay)
        raise ConnectivityError(f"{what} failed: {last_err}") from last_err

    def _paginate(self, what: str, list_fn: Callable[..., Any]) -> Iterator[Dict[str, Any]]:
        token = None
        page = 0
        while True:
            kwargs: Dict[str, Any] = {"limit": self.page_size, "_request_timeout": self.request_timeout}
            if token:
                kwargs["_continue"] = token
            resp = self._call(f"{what} (page {page})", list_fn, **kwargs)
            items = resp.items or []
            logger.debug(f"{what}: page {page} returned {len(items)} items")
            for item in items:
                yield self._to_dict(item)
            token = getattr(resp.metadata, "_continue", None) if resp.metadata else None
            if not token:
                return
            page += 1

    def _to_dict(self, item: Any) -> Dict[str, Any]:
        if isinstance(item, dict):
            return item
        return self.rbac_api.api_client.sanitize_for_serialization(item)

    def list_role_bindings(self) -> Iterator[Dict[str, Any]]:
        return self._paginate("list rolebindings", self.rbac_api.list_role_binding_for_all_namespaces)

    def list_cluster_role_bindings(self) -> Iterator[Dict[str, Any]]:
        return self._paginate("list clusterrolebindings", self.rbac_api.list_cluster_role_binding)

    def delete_role_binding(self, namespace: str, name: str) -> None:
        self.rbac_api.delete_namespaced_role_binding(
            name, namespace, _request_timeout=self.request_timeout
        )

    def delete_cluster_role_binding(self, name: str) -> None:
        self.rbac_api.delete_cluster_role_binding(name, _request_timeout=self.request_timeout)


def load_client(
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None,
    insecure_skip_tls_verify: bool = False,
    **kwargs,
) -> KubeRbacClient:
    """Build a KubeRbacClient from a kubeconfig path, the default kubeconfig,
    or the in-cluster service account, in that order."""
    cfg = client.Configuration()
    try:
        if kubeconfig:
            config.load_kube_config(config_file=kubeconfig, context=context, client_configuration=cfg)
        else:
            try:
                config.load_kube_config(context=context, client_configuration=cfg)
            except (ConfigException, FileNotFoundError):
                logger.debug("no usable default kubeconfig, trying in-cluster config")
                config.load_incluster_config(client_configuration=cfg)
    except (ConfigException, OSError) as e:
        raise ConnectivityError(f"error creating k8s client: {e}") from e

    if insecure_skip_tls_verify:
        logger.warning("TLS verification disabled for the cluster connection")
        cfg.verify_ssl = False
        cfg.ssl_ca_cert = None

    api_client = client.ApiClient(cfg)
    return KubeRbacClient(client.RbacAuthorizationV1Api(api_client), **kwargs)
