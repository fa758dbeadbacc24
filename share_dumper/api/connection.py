import logging

from fastapi import APIRouter, Depends, HTTPException, status

from share_dumper.core.exceptions import AuthenticationFailed, NoCredentialsStored, SMBConnectionError
from share_dumper.dependencies import (
    get_connection_service,
    get_mount_coordinator,
    get_network_diagnostics,
)
from share_dumper.models import ConnectRequest, Credential, MountRequest, Share
from share_dumper.services.smb import ConnectionService, MountCoordinator, NetworkDiagnostics

router = APIRouter(prefix="/api/connection", tags=["connection"])


def _serialize_share(share: Share) -> dict:
    data = share.model_dump(mode="json")
    data["id"] = share.id
    data["mount_path"] = str(share.mount_path)
    return data


@router.get("/status")
async def connection_status(connection: ConnectionService = Depends(get_connection_service)):
    return {
        "state": connection.state.value,
        "host": connection.connected_host,
        "share_count": len(connection.available_shares),
        "error": connection.last_error,
    }


@router.post("/connect")
async def connect(request: ConnectRequest, connection: ConnectionService = Depends(get_connection_service)):
    """Run diagnostics, enumerate shares and remember the credential for mounting."""
    logging.info(f"Connect requested: {request.host}", extra={"operation": "api_connect"})
    credential = Credential(
        username=request.username,
        password=request.password,
        save_to_keychain=request.save_to_keychain,
    )
    try:
        shares = await connection.connect(request.host, credential)
    except AuthenticationFailed as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except SMBConnectionError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return {
        "success": True,
        "host": request.host,
        "shares": [_serialize_share(share) for share in shares],
    }


@router.get("/shares")
async def list_shares(connection: ConnectionService = Depends(get_connection_service)):
    return {
        "host": connection.connected_host,
        "shares": [_serialize_share(share) for share in connection.available_shares],
    }


@router.post("/mount")
async def mount_shares(request: MountRequest, connection: ConnectionService = Depends(get_connection_service)):
    try:
        paths = await connection.mount_by_name(request.share_names)
    except NoCredentialsStored as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except KeyError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown share: {e.args[0]}")
    except SMBConnectionError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return {"success": True, "mount_paths": [str(path) for path in paths]}


@router.post("/unmount-all")
async def unmount_all(coordinator: MountCoordinator = Depends(get_mount_coordinator)):
    failed = await coordinator.unmount_all()
    return {"success": not failed, "failed": failed}


@router.get("/mounted")
async def mounted_shares(coordinator: MountCoordinator = Depends(get_mount_coordinator)):
    mounts = await coordinator.refresh_mounted_shares()
    return {
        "mounted": [
            {
                "source": mount.source,
                "mount_point": mount.mount_point,
                "host": mount.host,
                "volume_name": mount.volume_name,
            }
            for mount in mounts
        ]
    }


@router.get("/diagnostics/{host}")
async def run_diagnostics(host: str, diagnostics: NetworkDiagnostics = Depends(get_network_diagnostics)):
    report = await diagnostics.run(host)
    return report.to_dict()


@router.get("/stored-accounts")
async def stored_accounts(connection: ConnectionService = Depends(get_connection_service)):
    return {"accounts": connection.stored_accounts()}
