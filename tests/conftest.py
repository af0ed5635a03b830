from __future__ import annotations

import base64
import io
from datetime import date

import httpx
import pytest
from PIL import Image

from laudo.adapters.images import ImageResolver
from laudo.types import CaseData

TODAY = date(2024, 3, 15)


def make_image_bytes(width: int = 40, height: int = 20, fmt: str = 'PNG', color=(200, 30, 30)) -> bytes:
    out = io.BytesIO()
    Image.new('RGB', (width, height), color).save(out, format=fmt)
    return out.getvalue()


def make_data_url(width: int = 40, height: int = 20, fmt: str = 'PNG') -> str:
    mime = 'jpeg' if fmt.upper() == 'JPEG' else fmt.lower()
    payload = base64.b64encode(make_image_bytes(width, height, fmt)).decode('ascii')
    return f'data:image/{mime};base64,{payload}'


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def offline_resolver() -> ImageResolver:
    """Resolver that only understands data URLs; any HTTP request fails the test."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f'unexpected HTTP request: {request.url}')

    return ImageResolver(transport=httpx.MockTransport(handler))


@pytest.fixture
def full_case() -> CaseData:
    return CaseData.from_payload(
        {
            'process_number': '1000123-45.2023.5.02.0261',
            'claimant_name': 'Maria da Silva',
            'defendant_name': 'Metalúrgica Exemplo LTDA ADVOGADO: Dr. João Souza',
            'court': '1ª Vara do Trabalho de Diadema',
            'claimant_data': {
                'name': 'Maria da Silva',
                'positions': [
                    {'title': 'Operadora de máquinas', 'period': '01/03/2015 a 15/03/2020'},
                ],
            },
            'defendant_data': {'cnpj': '12.345.678/0001-90', 'address': 'Rua A, 100'},
            'insalubrity_analysis': '- Anexo 13 — Óleos minerais (Ocorre exposição) [contato habitual]',
            'insalubrity_results': (
                'Resultado Anexo 13 — Óleos minerais | Exposição: Ocorre exposição | Obs: manuseio diário\n\n'
                'Conclui-se pelo enquadramento em grau máximo.'
            ),
            'periculosity_results': 'Abastecimento de empilhadeira com GLP.',
            'attendees': [{'name': 'Carlos', 'function': 'Supervisor', 'company': 'Reclamada'}],
            'epis': [{'equipment': 'Luva nitrílica', 'protection': 'Mãos', 'ca': '12345'}],
            'report_config': {
                'flags': {'reportType': 'completo'},
                'header': {'peritoName': 'Ana Perita', 'professionalTitle': 'Engenheira de Segurança'},
                'questionnaires': {'claimantText': '1) Há insalubridade?\n2) Em qual grau?'},
                'epi_replacement_periodicity': {
                    'enabled': True,
                    'rows': [
                        {'equipment': 'Luva nitrílica', 'ca': '12345', 'delivery_date': '2019-01-10'},
                        {'equipment': 'Luva nitrílica', 'ca': '12345', 'delivery_date': '2019-05-10'},
                    ],
                    'useful_life_items': [
                        {'equipment': 'Luva nitrílica', 'ca': '12345', 'estimated_life': '3 meses'},
                    ],
                },
            },
        }
    )
