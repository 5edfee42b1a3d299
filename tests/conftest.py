from decimal import Decimal

import pytest

from mercadinho import create_app
from mercadinho.extensions import db
from mercadinho.core.alocacao import Disponibilidade, Exposicao
from mercadinho.core.models import Mercadinho, Produto, PrateleiraProduto, Cliente, User


@pytest.fixture
def app():
    app = create_app("config.TestConfig")
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def mercadinho(app):
    m = Mercadinho(nome="Mercadinho do Condomínio", ativo=True)
    db.session.add(m)
    db.session.commit()
    return m


@pytest.fixture
def produto(app):
    p = Produto(nome="Refrigerante Lata", codigo_barras="7894900011517",
                preco_compra=Decimal("1.20"), preco_venda=Decimal("3.00"), quantidade_atual=10)
    db.session.add(p)
    db.session.commit()
    return p


def criar_lote(mercadinho, produto, preco, quantidade, ativo=True):
    lote = PrateleiraProduto(
        mercadinho_id=mercadinho.id,
        produto_id=produto.id,
        preco_venda_prateleira=Decimal(str(preco)),
        quantidade_prateleira=quantidade,
        ativo=ativo,
    )
    db.session.add(lote)
    db.session.commit()
    return lote


@pytest.fixture
def dois_lotes(mercadinho, produto):
    """L1 a 2,00 com 1 unidade e L2 a 3,00 com 5."""
    return criar_lote(mercadinho, produto, "2.00", 1), criar_lote(mercadinho, produto, "3.00", 5)


@pytest.fixture
def cliente(app):
    c = Cliente(nome="Dona Maria", telefone="11999990000", ativo=True)
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture
def gerente(app):
    u = User(nome="Gerente", email="gerente@mercadinho.com.br", role="admin", ativo=True)
    u.set_password("segredo123")
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def admin_client(client, gerente):
    resp = client.post("/auth/login", json={"email": gerente.email, "password": "segredo123"})
    assert resp.status_code == 200
    return client


class EstoqueFalso:
    """Estoque em memória para testar carrinho e checkout sem banco."""

    def __init__(self, lotes=None):
        # {prateleira_id: [preco, quantidade, ativo]}
        self.lotes = {k: list(v) for k, v in (lotes or {}).items()}
        self.baixas = []
        self.recusar = set()

    def disponibilidade(self, mercadinho_id, produto_id):
        return Disponibilidade.de_exposicoes(
            Exposicao(id=k, preco=Decimal(str(v[0])), quantidade=v[1])
            for k, v in self.lotes.items() if v[2]
        )

    def quantidade_atual(self, prateleira_id):
        lote = self.lotes.get(prateleira_id)
        if lote is None or not lote[2]:
            return 0
        return lote[1]

    def decrementar(self, prateleira_id, quantidade):
        lote = self.lotes.get(prateleira_id)
        if prateleira_id in self.recusar or lote is None or lote[1] < quantidade:
            return False
        lote[1] -= quantidade
        self.baixas.append((prateleira_id, quantidade))
        return True


class ProdutoFalso:
    def __init__(self, id=1, nome="Biscoito", codigo_barras="789"):
        self.id = id
        self.nome = nome
        self.codigo_barras = codigo_barras


def sem_promocao(produto_id, preco_base):
    from mercadinho.core.promocoes import PrecoFinal
    return PrecoFinal(preco=Decimal(str(preco_base)), com_desconto=False)
