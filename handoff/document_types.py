from __future__ import annotations

from enum import Enum
from typing import Dict, List, Tuple


class EntityType(str, Enum):
    CITIZEN = "CITIZEN"
    USER = "USER"
    REGULATION = "REGULATION"


class DocumentType(str, Enum):
    RG = "RG"
    CPF = "CPF"
    CNH = "CNH"
    PROOF_OF_RESIDENCE = "PROOF_OF_RESIDENCE"
    SUS_CARD = "SUS_CARD"
    SUS_MIRROR = "SUS_MIRROR"
    BIRTH_CERTIFICATE = "BIRTH_CERTIFICATE"
    MARRIAGE_CERTIFICATE = "MARRIAGE_CERTIFICATE"
    VOTER_ID = "VOTER_ID"
    WORK_CARD = "WORK_CARD"
    PIS_PASEP = "PIS_PASEP"
    RESERVIST_CERTIFICATE = "RESERVIST_CERTIFICATE"
    GOV_BR = "GOV_BR"
    DIGITAL_CNH = "DIGITAL_CNH"
    DIGITAL_RG = "DIGITAL_RG"
    OTHER = "OTHER"
    PROFESSIONAL_REGISTRY = "PROFESSIONAL_REGISTRY"
    CONTRACT = "CONTRACT"
    DIPLOMA = "DIPLOMA"
    CERTIFICATION = "CERTIFICATION"
    LAUDO_MEDICO = "LAUDO_MEDICO"
    EXAME = "EXAME"
    GUIA_REFERENCIA = "GUIA_REFERENCIA"
    RECEITA = "RECEITA"
    AUTORIZACAO = "AUTORIZACAO"
    RELATORIO = "RELATORIO"
    IMAGEM_DIAGNOSTICA = "IMAGEM_DIAGNOSTICA"
    ENCAMINHAMENTO = "ENCAMINHAMENTO"
    PROCEDIMENTO = "PROCEDIMENTO"
    NOTA_FISCAL = "NOTA_FISCAL"
    TERMO = "TERMO"
    OUTROS = "OUTROS"


DOCUMENT_TYPE_LABELS: Dict[str, str] = {
    "RG": "RG",
    "CPF": "CPF",
    "CNH": "CNH",
    "PROOF_OF_RESIDENCE": "Comprovante de Residência",
    "SUS_CARD": "Cartão SUS",
    "SUS_MIRROR": "Espelho SUS",
    "BIRTH_CERTIFICATE": "Certidão de Nascimento",
    "MARRIAGE_CERTIFICATE": "Certidão de Casamento",
    "VOTER_ID": "Título de Eleitor",
    "WORK_CARD": "Carteira de Trabalho",
    "PIS_PASEP": "PIS/PASEP",
    "RESERVIST_CERTIFICATE": "Certificado de Reservista",
    "GOV_BR": "Gov.br",
    "DIGITAL_CNH": "CNH Digital",
    "DIGITAL_RG": "RG Digital",
    "OTHER": "Outro",
    "LAUDO_MEDICO": "Laudo Médico",
    "EXAME": "Exame",
    "GUIA_REFERENCIA": "Guia de Referência",
    "RECEITA": "Receita",
    "AUTORIZACAO": "Autorização",
    "RELATORIO": "Relatório",
    "IMAGEM_DIAGNOSTICA": "Imagem Diagnóstica",
    "ENCAMINHAMENTO": "Encaminhamento",
    "PROCEDIMENTO": "Procedimento",
    "NOTA_FISCAL": "Nota Fiscal",
    "TERMO": "Termo/Declaração",
    "OUTROS": "Outros",
}

CITIZEN_DOCUMENT_TYPES: Tuple[DocumentType, ...] = (
    DocumentType.RG,
    DocumentType.CPF,
    DocumentType.CNH,
    DocumentType.PROOF_OF_RESIDENCE,
    DocumentType.SUS_CARD,
    DocumentType.SUS_MIRROR,
    DocumentType.BIRTH_CERTIFICATE,
    DocumentType.MARRIAGE_CERTIFICATE,
    DocumentType.VOTER_ID,
    DocumentType.WORK_CARD,
    DocumentType.PIS_PASEP,
    DocumentType.RESERVIST_CERTIFICATE,
    DocumentType.GOV_BR,
    DocumentType.DIGITAL_CNH,
    DocumentType.DIGITAL_RG,
    DocumentType.OTHER,
    DocumentType.PROFESSIONAL_REGISTRY,
    DocumentType.CONTRACT,
    DocumentType.DIPLOMA,
    DocumentType.CERTIFICATION,
)

REGULATION_DOCUMENT_TYPES: Tuple[DocumentType, ...] = (
    DocumentType.LAUDO_MEDICO,
    DocumentType.EXAME,
    DocumentType.GUIA_REFERENCIA,
    DocumentType.RECEITA,
    DocumentType.AUTORIZACAO,
    DocumentType.RELATORIO,
    DocumentType.IMAGEM_DIAGNOSTICA,
    DocumentType.ENCAMINHAMENTO,
    DocumentType.PROCEDIMENTO,
    DocumentType.NOTA_FISCAL,
    DocumentType.TERMO,
    DocumentType.OUTROS,
)


def format_document_type(value: str) -> str:
    """Return the display label, title-casing unknown values."""
    label = DOCUMENT_TYPE_LABELS.get(value)
    if label:
        return label
    return value.replace("_", " ").lower().title()


def document_type_choices(
    types: Tuple[DocumentType, ...] = CITIZEN_DOCUMENT_TYPES,
) -> List[Tuple[str, str]]:
    return [(item.value, format_document_type(item.value)) for item in types]
