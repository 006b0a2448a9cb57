import os

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class TestCategories:
    def test_create_and_read(self, client, api, make_category):
        category = make_category("Electronics", color="#000")
        assert category["name"] == "Electronics"
        assert category["color"] == "#000"

        assert [c["name"] for c in client.get(f"{api}/category").json()] == ["Electronics"]
        assert client.get(f"{api}/category/{category['id']}").json()["name"] == "Electronics"

    def test_unknown_category(self, client, api):
        response = client.get(f"{api}/category/650000000000000000000000")
        assert response.status_code == 404
        assert response.json() == {"message": "The category with the given Id was not found"}

    def test_writes_need_a_token(self, client, api, db):
        response = client.post(f"{api}/category", json={"name": "Books"})
        assert response.status_code == 401
        assert db["categories"].count_documents({}) == 0

    def test_name_required(self, client, api, user_headers):
        response = client.post(f"{api}/category", json={"icon": "x"}, headers=user_headers)
        assert response.status_code == 400

    def test_update(self, client, api, make_category, user_headers):
        category = make_category()
        response = client.put(
            f"{api}/category",
            json={"icon": "bolt"},
            headers={**user_headers, "id": category["id"]},
        )
        assert response.status_code == 200
        assert response.json()["icon"] == "bolt"
        assert response.json()["name"] == "Electronics"

    def test_update_requires_id(self, client, api, user_headers):
        response = client.put(f"{api}/category", json={"icon": "bolt"}, headers=user_headers)
        assert response.status_code == 400
        assert response.json() == {"message": "Category ID is required in headers"}

    def test_delete_does_not_cascade(self, client, api, db, make_category, make_product, user_headers):
        category = make_category()
        product = make_product(category["id"])

        response = client.delete(f"{api}/category", headers={**user_headers, "id": category["id"]})
        assert response.status_code == 200
        assert db["categories"].count_documents({}) == 0
        assert db["products"].count_documents({}) == 1

        products = client.get(f"{api}/products", headers=user_headers).json()
        assert products[0]["id"] == product["id"]
        assert products[0]["category"] == category["id"]

    def test_delete_unknown(self, client, api, user_headers):
        response = client.delete(f"{api}/category", headers={**user_headers, "id": "650000000000000000000000"})
        assert response.status_code == 404


class TestProductWrites:
    def test_create(self, client, api, settings, make_category, make_product):
        category = make_category()
        product = make_product(category["id"], price=100, brand="Acme", isFeatured="true")

        assert product["price"] == 100
        assert product["brand"] == "Acme"
        assert product["isFeatured"] is True
        assert product["category"]["name"] == "Electronics"
        assert product["image"].startswith("http://testserver/public/uploads/photo-one.png-")
        assert product["dateCreated"]

        filename = product["image"].rsplit("/", 1)[1]
        assert os.path.exists(os.path.join(settings.upload_dir, filename))
        served = client.get(product["image"])
        assert served.status_code == 200
        assert served.content == PNG

    def _post(self, client, api, headers, data, files=None):
        if files is None:
            files = {"image": ("a.png", PNG, "image/png")}
        return client.post(f"{api}/products", data=data, files=files, headers=headers)

    def test_non_admin_forbidden(self, client, api, db, make_category, user_headers):
        category = make_category()
        data = {"name": "Phone", "description": "d", "category": category["id"], "price": "1"}
        response = self._post(client, api, user_headers, data)
        assert response.status_code == 403
        assert db["products"].count_documents({}) == 0

    def test_anonymous_rejected(self, client, api, db, make_category):
        category = make_category()
        data = {"name": "Phone", "description": "d", "category": category["id"], "price": "1"}
        response = self._post(client, api, {}, data)
        assert response.status_code == 401
        assert db["products"].count_documents({}) == 0

    def test_invalid_category(self, client, api, admin_headers):
        data = {"name": "Phone", "description": "d", "category": "650000000000000000000000", "price": "1"}
        response = self._post(client, api, admin_headers, data)
        assert response.status_code == 400
        assert response.json() == {"message": "Invalid Category"}

    def test_image_required(self, client, api, make_category, admin_headers):
        category = make_category()
        data = {"name": "Phone", "description": "d", "category": category["id"], "price": "1"}
        response = client.post(f"{api}/products", data=data, headers=admin_headers)
        assert response.status_code == 400
        assert response.json() == {"message": "No image provided"}

    def test_bad_image_type_writes_nothing(self, client, api, db, settings, make_category, admin_headers):
        category = make_category()
        data = {"name": "Phone", "description": "d", "category": category["id"], "price": "1"}
        response = self._post(client, api, admin_headers, data, files={"image": ("a.gif", b"GIF89a", "image/gif")})
        assert response.status_code == 400
        assert response.json() == {"message": "Invalid image type"}
        assert db["products"].count_documents({}) == 0
        assert not os.path.exists(settings.upload_dir) or not os.listdir(settings.upload_dir)

    def test_negative_price(self, client, api, db, make_category, admin_headers):
        category = make_category()
        data = {"name": "Phone", "description": "d", "category": category["id"], "price": "-5"}
        response = self._post(client, api, admin_headers, data)
        assert response.status_code == 400
        assert db["products"].count_documents({}) == 0

    def test_update(self, client, api, make_category, make_product, admin_headers):
        product = make_product(make_category()["id"], price=100)
        response = client.put(
            f"{api}/products",
            data={"price": "150", "name": "Phone 2"},
            headers={**admin_headers, "id": product["id"]},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["price"] == 150
        assert body["name"] == "Phone 2"
        assert body["image"] == product["image"]

    def test_update_with_new_image(self, client, api, make_category, make_product, admin_headers):
        product = make_product(make_category()["id"])
        response = client.put(
            f"{api}/products",
            files={"image": ("new.jpg", b"\xff\xd8\xff", "image/jpeg")},
            headers={**admin_headers, "id": product["id"]},
        )
        assert response.status_code == 200
        assert response.json()["image"].endswith(".jpeg")

    def test_update_invalid_category(self, client, api, make_category, make_product, admin_headers):
        product = make_product(make_category()["id"])
        response = client.put(
            f"{api}/products",
            data={"category": "bogus"},
            headers={**admin_headers, "id": product["id"]},
        )
        assert response.status_code == 400

    def test_update_unknown(self, client, api, admin_headers):
        response = client.put(
            f"{api}/products",
            data={"price": "1"},
            headers={**admin_headers, "id": "650000000000000000000000"},
        )
        assert response.status_code == 404

    def test_upload_name_cannot_leave_upload_dir(self, client, api, settings, make_category, admin_headers):
        category = make_category()
        data = {"name": "Phone", "description": "d", "category": category["id"], "price": "1"}
        response = self._post(
            client, api, admin_headers, data, files={"image": ("../../escaped.png", PNG, "image/png")}
        )
        assert response.status_code == 200
        url = response.json()["image"]
        assert ".." not in url

        filename = url.rsplit("/", 1)[1]
        assert filename.startswith("escaped.png-")
        assert os.listdir(settings.upload_dir) == [filename]
        assert not any(
            name.startswith("escaped.png-")
            for name in os.listdir(os.path.dirname(os.path.dirname(os.path.realpath(settings.upload_dir))))
        )

    def test_gallery(self, client, api, make_category, make_product, admin_headers):
        product = make_product(make_category()["id"])
        response = client.put(
            f"{api}/products/gallery-images",
            files=[
                ("images", ("one.png", PNG, "image/png")),
                ("images", ("two.png", PNG, "image/png")),
            ],
            headers={**admin_headers, "id": product["id"]},
        )
        assert response.status_code == 200
        assert len(response.json()["images"]) == 2

    def test_delete(self, client, api, db, make_category, make_product, admin_headers, user_headers):
        product = make_product(make_category()["id"])

        response = client.delete(f"{api}/products", headers={**user_headers, "id": product["id"]})
        assert response.status_code == 403

        response = client.delete(f"{api}/products", headers={**admin_headers, "id": product["id"]})
        assert response.status_code == 200
        assert response.json() == {"message": "Product Deleted"}
        assert db["products"].count_documents({}) == 0


class TestProductReads:
    def test_listing_needs_a_token(self, client, api):
        assert client.get(f"{api}/products").status_code == 401

    def test_by_id(self, client, api, make_category, make_product, user_headers):
        product = make_product(make_category()["id"], name="Phone")
        response = client.get(f"{api}/products", params={"id": product["id"]}, headers=user_headers)
        assert response.status_code == 200
        assert response.json() == {"name": "Phone", "image": product["image"]}

    def test_by_unknown_id(self, client, api, user_headers):
        response = client.get(f"{api}/products", params={"id": "650000000000000000000000"}, headers=user_headers)
        assert response.status_code == 404

    def test_by_category(self, client, api, make_category, make_product, user_headers):
        phones = make_category("Phones")
        books = make_category("Books")
        make_product(phones["id"], name="Phone")
        make_product(books["id"], name="Novel")

        response = client.get(f"{api}/products", params={"categoryid": books["id"]}, headers=user_headers)
        assert [p["name"] for p in response.json()] == ["Novel"]

        empty = make_category("Empty")
        response = client.get(f"{api}/products", params={"categoryid": empty["id"]}, headers=user_headers)
        assert response.status_code == 404

    def test_count_and_featured(self, client, api, make_category, make_product):
        category = make_category()
        make_product(category["id"], name="A", isFeatured="true")
        make_product(category["id"], name="B", isFeatured="true")
        make_product(category["id"], name="C")

        assert client.get(f"{api}/products/get/count").json() == {"productCount": 3}
        assert len(client.get(f"{api}/products/get/featured/5").json()) == 2
        assert len(client.get(f"{api}/products/get/featured/1").json()) == 1
        assert client.get(f"{api}/products/get/featured/0").json() == []

    def test_filter(self, client, api, make_category, make_product):
        phones = make_category("Phones")
        books = make_category("Books")
        make_product(phones["id"], name="Phone", price=500)
        make_product(books["id"], name="Novel", price=20)
        make_product(books["id"], name="Atlas", price=80)

        by_category = client.get(f"{api}/products/filter", params={"categories": books["id"]}).json()
        assert {p["name"] for p in by_category} == {"Novel", "Atlas"}

        both = client.get(f"{api}/products/filter", params={"categories": f"{phones['id']},{books['id']}"}).json()
        assert len(both) == 3

        cheap = client.get(f"{api}/products/filter", params={"maxPrice": 50}).json()
        assert [p["name"] for p in cheap] == ["Novel"]

        mid = client.get(f"{api}/products/filter", params={"minPrice": 50, "maxPrice": 100}).json()
        assert [p["name"] for p in mid] == ["Atlas"]
