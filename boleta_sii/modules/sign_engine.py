"""
BOLETA-SII — Module 2: SignEngine
Signs the serialized boleta with the company's .pfx certificate.

Flow:
1. CertificateProvider reads the .pfx from SII_CERT_PATH once per process
2. The private key and certificate are extracted into a CertificateHandle
3. The active SigningBackend signs each boleta XML
4. Signer wraps the result in an immutable SignedDocument

SII signing requirements:
- Format: enveloped XML-DSig, Signature appended to the DTE root
- Reference: URI="#DTE{folio}" (the Documento ID attribute)
- Canonicalization: C14N 1.0 (inclusive)
- Algorithms: RSA-SHA1 signature, SHA-1 digest (mandated by the SII)
- KeyInfo carries KeyValue and X509Data

Demo mode never touches a certificate: the XML is returned with a
marker comment that states it is not a valid signature.
"""

import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives.serialization import (
    Encoding, NoEncryption, PrivateFormat, pkcs12,
)
from lxml import etree

from boleta_sii.core.config import Settings
from boleta_sii.core.exceptions import ConfigurationError, SigningError
from boleta_sii.sii.documents import SignedDocument
from boleta_sii.sii.xml_generator import (
    SII_NS, XML_DECLARATION, XML_ENCODING, extract_document_id,
)

logger = logging.getLogger(__name__)

DEMO_MARKER = "<!-- FIRMA DIGITAL DEMO - NO VALIDA PARA ENVIO REAL AL SII -->"


class CertificateHandle:
    """
    Private key and certificate extracted from the .pfx.
    Read-only once built; shared by concurrent requests.
    """

    def __init__(self, private_key_pem: bytes, certificate: x509.Certificate):
        self._private_key_pem = private_key_pem
        self._certificate = certificate
        self._certificate_pem = certificate.public_bytes(Encoding.PEM)

    @property
    def private_key_pem(self) -> bytes:
        return self._private_key_pem

    @property
    def certificate_pem(self) -> bytes:
        return self._certificate_pem

    @property
    def subject(self) -> str:
        return self._certificate.subject.rfc4514_string()

    @property
    def issuer(self) -> str:
        return self._certificate.issuer.rfc4514_string()

    @property
    def serial_number(self) -> str:
        return format(self._certificate.serial_number, "X")

    @property
    def valid_from(self) -> datetime:
        return self._certificate.not_valid_before_utc

    @property
    def valid_to(self) -> datetime:
        return self._certificate.not_valid_after_utc

    @property
    def is_valid_now(self) -> bool:
        now = datetime.now(timezone.utc)
        return self.valid_from <= now <= self.valid_to

    def to_dict(self) -> dict:
        return {
            "subject": self.subject,
            "issuer": self.issuer,
            "serial_number": self.serial_number,
            "valid_from": self.valid_from.isoformat(),
            "valid_to": self.valid_to.isoformat(),
            "is_valid": self.is_valid_now,
            "is_demo": False,
        }


class CertificateProvider:
    """
    Loads the .pfx at most once. Thread-safe: concurrent first calls
    block on the lock and all receive the same handle.

    Usage:
        provider = CertificateProvider("/certs/empresa.pfx", "secreto")
        handle = provider.get()
    """

    def __init__(self, cert_path: str, password: str):
        self.cert_path = cert_path
        self._password = password
        self._handle: Optional[CertificateHandle] = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._handle is not None

    def get(self) -> CertificateHandle:
        if self._handle is not None:
            return self._handle
        with self._lock:
            if self._handle is None:
                self._handle = self._load()
        return self._handle

    def _load(self) -> CertificateHandle:
        if not self.cert_path or not os.path.isfile(self.cert_path):
            raise ConfigurationError(
                f"Certificado no encontrado en: {self.cert_path or '(vacío)'}",
                code="CERT_NOT_FOUND",
            )

        with open(self.cert_path, "rb") as f:
            p12_data = f.read()

        try:
            pwd_bytes = self._password.encode("utf-8") if self._password else None
            private_key, certificate, _chain = pkcs12.load_key_and_certificates(
                p12_data, pwd_bytes
            )
        except ValueError as e:
            if "password" in str(e).lower() or "mac" in str(e).lower():
                raise ConfigurationError(
                    "Contraseña incorrecta o archivo .pfx inválido.",
                    code="CERT_WRONG_PASSWORD",
                ) from e
            raise ConfigurationError(
                f"Error al leer el archivo .pfx: {str(e)}",
                code="CERT_INVALID_FORMAT",
            ) from e

        if private_key is None:
            raise SigningError(
                "El archivo .pfx no contiene una clave privada.",
                code="CERT_NO_PRIVATE_KEY",
            )
        if certificate is None:
            raise SigningError(
                "El archivo .pfx no contiene un certificado.",
                code="CERT_NO_CERTIFICATE",
            )

        handle = CertificateHandle(
            private_key_pem=private_key.private_bytes(
                encoding=Encoding.PEM,
                format=PrivateFormat.PKCS8,
                encryption_algorithm=NoEncryption(),
            ),
            certificate=certificate,
        )

        if not handle.is_valid_now:
            logger.warning(
                f"Certificate outside its validity window: valid_to={handle.valid_to.isoformat()}"
            )

        logger.info(
            f"Certificate loaded: subject={handle.subject}, "
            f"valid_to={handle.valid_to.isoformat()}"
        )
        return handle


# ─────────────────────────────────────────────────────────────
# SIGNING BACKENDS
# ─────────────────────────────────────────────────────────────

class SigningBackend:
    is_demo = False

    def sign(self, xml: str) -> str:
        raise NotImplementedError

    def verify(self, signed_xml: str) -> bool:
        raise NotImplementedError

    def certificate_info(self) -> dict:
        raise NotImplementedError


class DemoSigningBackend(SigningBackend):
    """Pass-through signer: appends a marker comment, no cryptography."""

    is_demo = True

    def sign(self, xml: str) -> str:
        idx = xml.rfind("</")
        if idx == -1:
            logger.warning("Demo signing: no closing root tag found, marker appended at end")
            return f"{xml}\n{DEMO_MARKER}"
        return f"{xml[:idx]}{DEMO_MARKER}\n{xml[idx:]}"

    def verify(self, signed_xml: str) -> bool:
        return signed_xml.count(DEMO_MARKER) == 1

    def certificate_info(self) -> dict:
        now = datetime.now(timezone.utc)
        return {
            "subject": "DEMO CERTIFICATE",
            "issuer": "DEMO CA",
            "serial_number": "DEMO-123456",
            "valid_from": now.isoformat(),
            "valid_to": (now + timedelta(days=365)).isoformat(),
            "is_valid": True,
            "is_demo": True,
        }


class XmlDsigSigningBackend(SigningBackend):
    """
    Real XML-DSig signing with python-xmlsec.
    Failures always propagate as SigningError / ConfigurationError.
    """

    def __init__(self, provider: CertificateProvider):
        self.provider = provider

    def sign(self, xml: str) -> str:
        root = self._parse(xml)
        documento = root.find(f"{{{SII_NS}}}Documento")
        if documento is None or not documento.get("ID"):
            raise SigningError(
                "El XML no contiene un elemento Documento con atributo ID.",
                code="XML_NO_DOCUMENT_ID",
            )
        doc_id = documento.get("ID")
        handle = self.provider.get()
        if not handle.is_valid_now:
            raise ConfigurationError(
                f"El certificado no está vigente (válido hasta "
                f"{handle.valid_to.strftime('%Y-%m-%d')}).",
                code="CERT_EXPIRED",
            )

        import xmlsec

        try:
            signature = xmlsec.template.create(
                root,
                xmlsec.constants.TransformInclC14N,
                xmlsec.constants.TransformRsaSha1,
            )
            root.append(signature)

            ref = xmlsec.template.add_reference(
                signature, xmlsec.constants.TransformSha1, uri=f"#{doc_id}"
            )
            xmlsec.template.add_transform(ref, xmlsec.constants.TransformInclC14N)

            key_info = xmlsec.template.ensure_key_info(signature)
            xmlsec.template.add_key_value(key_info)
            xmlsec.template.add_x509_data(key_info)

            xmlsec.tree.add_ids(root, ["ID"])

            key = xmlsec.Key.from_memory(
                handle.private_key_pem, xmlsec.constants.KeyDataFormatPem
            )
            key.load_cert_from_memory(
                handle.certificate_pem, xmlsec.constants.KeyDataFormatPem
            )

            ctx = xmlsec.SignatureContext()
            ctx.key = key
            ctx.sign(signature)

        except xmlsec.Error as e:
            logger.error(f"XML-DSig signing failed for {doc_id}: {e}")
            raise SigningError(f"Error al firmar el DTE: {str(e)}", code="SIGN_FAILED") from e

        logger.info(f"DTE signed: id={doc_id}, cert={handle.subject}")
        return f"{XML_DECLARATION}\n{etree.tostring(root, encoding='unicode')}"

    def verify(self, signed_xml: str) -> bool:
        root = self._parse(signed_xml)

        import xmlsec

        signature = xmlsec.tree.find_node(root, xmlsec.constants.NodeSignature)
        if signature is None:
            return False
        xmlsec.tree.add_ids(root, ["ID"])

        ctx = xmlsec.SignatureContext()
        ctx.key = xmlsec.Key.from_memory(
            self.provider.get().certificate_pem, xmlsec.constants.KeyDataFormatCertPem
        )
        try:
            ctx.verify(signature)
        except xmlsec.VerificationError:
            return False
        return True

    def certificate_info(self) -> dict:
        return self.provider.get().to_dict()

    @staticmethod
    def _parse(xml: str):
        try:
            return etree.fromstring(xml.encode(XML_ENCODING))
        except UnicodeEncodeError as e:
            raise SigningError(
                f"El XML contiene caracteres fuera de {XML_ENCODING}: {e}",
                code="XML_ENCODING",
            ) from e
        except etree.XMLSyntaxError as e:
            raise SigningError(f"XML mal formado: {e}", code="XML_MALFORMED") from e


# ─────────────────────────────────────────────────────────────
# SIGNER
# ─────────────────────────────────────────────────────────────

class Signer:
    """
    Usage:
        signer = Signer(DemoSigningBackend())
        signed = signer.sign(xml)
    """

    def __init__(self, backend: SigningBackend):
        self.backend = backend

    @property
    def is_demo(self) -> bool:
        return self.backend.is_demo

    def sign(self, xml: str) -> SignedDocument:
        signed_xml = self.backend.sign(xml)
        return SignedDocument(
            xml=xml,
            signed_xml=signed_xml,
            document_id=extract_document_id(xml),
            is_demo=self.backend.is_demo,
        )

    def verify(self, signed: SignedDocument | str) -> bool:
        signed_xml = signed.signed_xml if isinstance(signed, SignedDocument) else signed
        return self.backend.verify(signed_xml)

    def get_certificate_info(self) -> dict:
        return self.backend.certificate_info()


def build_signer(cfg: Settings) -> Signer:
    """Pick the signing backend once, from the configured mode."""
    if cfg.is_demo:
        logger.info("Signer: demo mode, documents will carry a non-valid marker")
        return Signer(DemoSigningBackend())
    provider = CertificateProvider(cfg.sii_cert_path, cfg.sii_cert_password)
    logger.info(f"Signer: XML-DSig with certificate {cfg.sii_cert_path}")
    return Signer(XmlDsigSigningBackend(provider))
