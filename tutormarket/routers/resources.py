"""
Certificate and resource router. Files go to the S3 object store:
certificates/<user_id>/<file> and resources/<user_id>/<file>.
"""
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import RedirectResponse, Response
from pathlib import PurePosixPath
from sqlalchemy.orm import Session
from typing import List, Optional
from tutormarket.database.database import get_db, CertificateApproval, Tutor, TutorResource, UserRole
from tutormarket.auth_tools import get_current_user, require_roles, tutor_only
from tutormarket.errors import NotAuthorized, NotFound, ValidationFailed
from tutormarket.schemas.resource_schema import CertificateResponse, ResourceResponse
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.routers.authentication import limiter
from tutormarket.storage import ObjectStore, certificate_key, get_object_store
from tutormarket.utilities import get_tutor_for_user
from tutormarket.logger import logger

router = APIRouter()

ALLOWED_CERTIFICATE_TYPES = ["application/pdf", "image/png", "image/jpeg", "image/jpg", "image/webp"]

def upload_name(file: UploadFile) -> str:
    """Base name of an uploaded file, without any client side directories."""
    name = PurePosixPath((file.filename or "").replace("\\", "/")).name.strip()
    if not name or name in (".", ".."):
        raise ValidationFailed("Invalid filename")
    return name

def owned_by_actor(db: Session, tutor_id: str, current_user: DecodedAccessToken) -> bool:
    if current_user.role == UserRole.ADMIN.value:
        return True
    if current_user.role != UserRole.TUTOR.value:
        return False
    return db.query(Tutor.id).filter(Tutor.id == tutor_id, Tutor.user_id == current_user.sub).first() is not None

def get_certificate_or_404(db: Session, certificate_id: str) -> CertificateApproval:
    certificate = db.query(CertificateApproval).filter(CertificateApproval.id == certificate_id).first()
    if not certificate:
        raise NotFound("Certificate not found", details={"certificate_id": certificate_id})
    return certificate

def file_response(store: ObjectStore, bucket: str, key: str, file_name: str, media_type: Optional[str], redirect: bool) -> Response:
    """The object itself, or with redirect a presigned link to fetch it from the store directly."""
    if redirect:
        return RedirectResponse(store.download_url(bucket, key), status_code=307)
    return Response(
        content=store.read(bucket, key),
        media_type=media_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'}
    )

def delete_certificate_row(db: Session, store: ObjectStore, certificate: CertificateApproval):
    """Remove a certificate row and its file. The caller commits."""
    store.delete("certificates", certificate_key(certificate.tutor.user_id, certificate.file_name))
    db.delete(certificate)

############################
####### CERTIFICATES #######
############################

@router.post('/certificates', response_model=CertificateResponse, tags=['certificates'])
@limiter.limit("10/minute")
def upload_certificate(
    request: Request,
    file: UploadFile = File(...),
    current_user: DecodedAccessToken = Depends(tutor_only),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store)
):
    """
    Upload a certificate. It stays pending until an admin approves or rejects it.
    Uploading a file with the same name replaces it and resets the decision.
    """
    tutor = get_tutor_for_user(db, current_user.sub)
    if file.content_type not in ALLOWED_CERTIFICATE_TYPES:
        raise ValidationFailed("Invalid file type. Only PDF and image files are allowed.", details={"content_type": file.content_type})
    file_name = upload_name(file)
    store.upload("certificates", certificate_key(current_user.sub, file_name), file.file, content_type=file.content_type)

    certificate = db.query(CertificateApproval).filter(
        CertificateApproval.tutor_id == tutor.id,
        CertificateApproval.file_name == file_name
    ).first()
    if certificate is None:
        certificate = CertificateApproval(tutor_id=tutor.id, file_name=file_name)
        db.add(certificate)
    else:
        certificate.is_approved = None
        certificate.approved_at = None
        certificate.approved_by = None
    db.commit()
    db.refresh(certificate)
    logger.info(f"Certificate {file_name} uploaded by tutor {tutor.id}")
    return certificate

@router.get('/certificates/me', response_model=List[CertificateResponse], tags=['certificates'])
def get_own_certificates(current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    tutor = get_tutor_for_user(db, current_user.sub)
    return db.query(CertificateApproval).filter(CertificateApproval.tutor_id == tutor.id).order_by(CertificateApproval.created_at.desc()).all()

@router.get('/certificates/{certificate_id}/download', tags=['certificates'])
def download_certificate(
    certificate_id: str,
    redirect: bool = False,
    current_user: DecodedAccessToken = Depends(require_roles(UserRole.TUTOR, UserRole.ADMIN)),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store)
):
    certificate = get_certificate_or_404(db, certificate_id)
    if not owned_by_actor(db, certificate.tutor_id, current_user):
        raise NotAuthorized("User not authorized to download this certificate")
    key = certificate_key(certificate.tutor.user_id, certificate.file_name)
    return file_response(store, "certificates", key, certificate.file_name, None, redirect)

@router.delete('/certificates/{certificate_id}', tags=['certificates'])
def delete_certificate(
    certificate_id: str,
    current_user: DecodedAccessToken = Depends(require_roles(UserRole.TUTOR, UserRole.ADMIN)),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store)
):
    certificate = get_certificate_or_404(db, certificate_id)
    if not owned_by_actor(db, certificate.tutor_id, current_user):
        raise NotAuthorized("User not authorized to delete this certificate")
    delete_certificate_row(db, store, certificate)
    db.commit()
    return {"certificate_id": certificate_id, "message": f"Certificate {certificate_id} deleted"}

############################
######## RESOURCES #########
############################

@router.post('/resources', response_model=ResourceResponse, tags=['resources'])
@limiter.limit("10/minute")
def upload_resource(
    request: Request,
    title: str = Form(...),
    description: Optional[str] = Form(None),
    subject: Optional[str] = Form(None),
    is_public: bool = Form(False),
    file: UploadFile = File(...),
    current_user: DecodedAccessToken = Depends(tutor_only),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store)
):
    """Upload a teaching resource. Public resources show on the tutor's profile."""
    tutor = get_tutor_for_user(db, current_user.sub)
    if not title.strip():
        raise ValidationFailed("title is required")
    file_path = f"{current_user.sub}/{upload_name(file)}"
    store.upload("resources", file_path, file.file, content_type=file.content_type)

    resource = TutorResource(
        tutor_id=tutor.id,
        title=title.strip(),
        description=description,
        subject=subject,
        is_public=is_public,
        file_path=file_path,
        file_type=file.content_type
    )
    db.add(resource)
    db.commit()
    db.refresh(resource)
    return resource

@router.get('/resources/me', response_model=List[ResourceResponse], tags=['resources'])
def get_own_resources(current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    tutor = get_tutor_for_user(db, current_user.sub)
    return db.query(TutorResource).filter(TutorResource.tutor_id == tutor.id).order_by(TutorResource.created_at.desc()).all()

def get_resource_or_404(db: Session, resource_id: str) -> TutorResource:
    resource = db.query(TutorResource).filter(TutorResource.id == resource_id).first()
    if not resource:
        raise NotFound("Resource not found", details={"resource_id": resource_id})
    return resource

@router.get('/resources/{resource_id}/download', tags=['resources'])
def download_resource(
    resource_id: str,
    redirect: bool = False,
    current_user: DecodedAccessToken = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store)
):
    """Public resources can be downloaded by anybody logged in, private ones by their tutor and admins."""
    resource = get_resource_or_404(db, resource_id)
    if not resource.is_public and not owned_by_actor(db, resource.tutor_id, current_user):
        raise NotAuthorized("This resource is private")
    file_name = PurePosixPath(resource.file_path).name
    return file_response(store, "resources", resource.file_path, file_name, resource.file_type, redirect)

@router.delete('/resources/{resource_id}', tags=['resources'])
def delete_resource(
    resource_id: str,
    current_user: DecodedAccessToken = Depends(require_roles(UserRole.TUTOR, UserRole.ADMIN)),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store)
):
    resource = get_resource_or_404(db, resource_id)
    if not owned_by_actor(db, resource.tutor_id, current_user):
        raise NotAuthorized("User not authorized to delete this resource")
    store.delete("resources", resource.file_path)
    db.delete(resource)
    db.commit()
    return {"resource_id": resource_id, "message": f"Resource {resource_id} deleted"}
