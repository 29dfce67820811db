from fastapi.testclient import TestClient
from wingsed.main import app
from wingsed.search import TypesenseService, build_filter, get_search_service

client = TestClient(app)


class FakeDocuments:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.params = None
        self.imported = None

    def search(self, params):
        self.params = params
        if self.error:
            raise self.error
        return self.result

    def import_(self, documents, options):
        self.imported = (documents, options)


class FakeCollection:
    def __init__(self, documents):
        self.documents = documents


class FakeClient:
    def __init__(self, documents):
        self.collections = {'universities': FakeCollection(documents)}


def _service(documents):
    return TypesenseService(client=FakeClient(documents))


def test_build_filter():
    assert build_filter() is None
    assert build_filter(country='New Zealand') == 'country:=`New Zealand`'
    assert build_filter(budget_min=100, budget_max=200) == 'tuitionFee:[100..200]'
    assert build_filter(budget_min=100) == 'tuitionFee:>=100'
    assert build_filter(country='Canada', budget_max=200) == 'country:=`Canada` && tuitionFee:<=200'


def test_search_uses_index_results(monkeypatch):
    docs = FakeDocuments(result={
        'found': 13,
        'hits': [{'document': {
            'id': 'u1', 'name': 'Index U', 'country': 'Canada', 'city': 'Toronto',
            'tuitionFee': 20000, 'publicPrivate': 'Public', 'description': '',
        }}],
    })
    app.dependency_overrides[get_search_service] = lambda: _service(docs)
    try:
        r = client.get('/api/search/universities', params={'q': 'index', 'country': 'Canada', 'pageSize': 12})
    finally:
        app.dependency_overrides.pop(get_search_service)
    assert r.status_code == 200
    body = r.json()
    assert body['total'] == 13
    assert body['totalPages'] == 2
    assert body['hits'][0]['name'] == 'Index U'
    assert docs.params['q'] == 'index'
    assert docs.params['sort_by'] == 'tuitionFee:asc'
    assert docs.params['filter_by'] == 'country:=`Canada`'


def test_search_falls_back_to_database(make_university):
    make_university(name='Fallback Tech', country='Germany', city='Munich', tuition_fee=1500)
    make_university(name='Other Place', country='Germany', city='Hamburg', tuition_fee=9000)
    docs = FakeDocuments(error=ConnectionError('typesense down'))
    app.dependency_overrides[get_search_service] = lambda: _service(docs)
    try:
        r = client.get('/api/search/universities', params={'q': 'fallback', 'budgetMax': 2000})
    finally:
        app.dependency_overrides.pop(get_search_service)
    assert r.status_code == 200
    body = r.json()
    assert body['total'] == 1
    assert body['page'] == 1
    assert body['totalPages'] == 1
    assert body['hits'][0]['name'] == 'Fallback Tech'
    assert body['hits'][0]['tuitionFee'] == 1500


def test_sync_universities_upserts_documents(db, make_university):
    make_university(name='Synced U', description=None)
    docs = FakeDocuments()
    count = _service(docs).sync_universities(db)
    assert count == 1
    documents, options = docs.imported
    assert options == {'action': 'upsert'}
    assert documents[0]['name'] == 'Synced U'
    assert documents[0]['description'] == ''
    assert documents[0]['tuitionFee'] == 20000
