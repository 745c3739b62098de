from dataclasses import asdict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from nodectl.api.routes import get_caller, get_services
from nodectl.modules.models import PowerAction, ServerTypeSort

router = APIRouter()


class NodeRequest(BaseModel):
    name: str
    server_type: str
    location: str
    domain: str


class PowerRequest(BaseModel):
    action: PowerAction


class SSHKeyRequest(BaseModel):
    private_key: str
    public_key: str = ""


@router.put("/ssh-key")
def set_ssh_key(req: SSHKeyRequest, caller=Depends(get_caller), services=Depends(get_services)):
    fingerprint = services.nodes.set_ssh_key(caller, req.private_key, req.public_key)
    return {"fingerprint": fingerprint}


@router.post("/nodes", status_code=201)
def create_node(req: NodeRequest, caller=Depends(get_caller), services=Depends(get_services)):
    return services.nodes.create_node(caller, req.name, req.server_type, req.location, req.domain)


@router.get("/nodes")
def list_nodes(caller=Depends(get_caller), services=Depends(get_services)):
    return services.nodes.list_nodes(caller)


@router.get("/nodes/{node_id}")
def get_node(node_id: str, caller=Depends(get_caller), services=Depends(get_services)):
    return services.nodes.get_node(caller, node_id)


@router.delete("/nodes/{node_id}", status_code=204)
def delete_node(node_id: str, caller=Depends(get_caller), services=Depends(get_services)):
    services.nodes.delete_node(caller, node_id)


@router.post("/nodes/{node_id}/power")
def power(node_id: str, req: PowerRequest, caller=Depends(get_caller), services=Depends(get_services)):
    return {"status": services.nodes.power(caller, node_id, req.action)}


@router.get("/nodes/{node_id}/health")
def node_health(node_id: str, caller=Depends(get_caller), services=Depends(get_services)):
    return services.nodes.check_health(caller, node_id).to_dict()


@router.get("/server-types")
def server_types(sort: ServerTypeSort = ServerTypeSort.PRICE_ASC, services=Depends(get_services)):
    return [asdict(t) for t in services.nodes.list_server_types(sort)]
